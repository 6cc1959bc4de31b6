import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


DEFAULT_VAULT_PATH = "./vault"
DEFAULT_DB_FOLDER = "obsidian-learn-db"
DEFAULT_COMPLETION_URL = "http://localhost:3001"
DEFAULT_MODEL = "local model"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


# PUBLIC_INTERFACE
@dataclass
class Settings:
    """
    Runtime settings for the notelearn backend.

    Values come from the environment (NOTELEARN_* variables), optionally
    loaded from a .env file. `always_redistill` is read-only at runtime: a
    one-off forced redistillation is requested per call, never by flipping
    this flag.
    """

    vault_path: str = DEFAULT_VAULT_PATH
    db_folder: str = DEFAULT_DB_FOLDER
    completion_url: str = DEFAULT_COMPLETION_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 1000
    completion_timeout: float = 120.0
    always_redistill: bool = False
    summarize_on_open: bool = True
    key_points_prefix: str = "- "
    log_level: str = "INFO"
    cors_allow_origins: List[str] = field(default_factory=lambda: ["*"])

    # PUBLIC_INTERFACE
    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from the process environment after loading a .env file if present."""
        load_dotenv(dotenv_path)
        origins = os.getenv("CORS_ALLOW_ORIGINS")
        return cls(
            vault_path=os.getenv("NOTELEARN_VAULT_PATH", DEFAULT_VAULT_PATH),
            db_folder=os.getenv("NOTELEARN_DB_FOLDER", DEFAULT_DB_FOLDER),
            completion_url=os.getenv("NOTELEARN_COMPLETION_URL", DEFAULT_COMPLETION_URL),
            model=os.getenv("NOTELEARN_MODEL", DEFAULT_MODEL),
            temperature=_env_float("NOTELEARN_TEMPERATURE", 0.7),
            max_tokens=_env_int("NOTELEARN_MAX_TOKENS", 1000),
            completion_timeout=_env_float("NOTELEARN_COMPLETION_TIMEOUT", 120.0),
            always_redistill=_env_bool("NOTELEARN_ALWAYS_REDISTILL", False),
            summarize_on_open=_env_bool("NOTELEARN_SUMMARIZE_ON_OPEN", True),
            key_points_prefix=os.getenv("NOTELEARN_KEY_POINTS_PREFIX", "- "),
            log_level=os.getenv("NOTELEARN_LOG_LEVEL", "INFO").upper(),
            cors_allow_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else ["*"],
        )
