import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from notelearn.errors import LearnError
from notelearn.notices import Notifier
from notelearn.services.completion import CompletionClient
from notelearn.storage.vault import Vault


logger = logging.getLogger(__name__)

SUMMARY_FAILED_TEXT = "Failed to extract key points - API error"

SUMMARY_PROMPT_TEMPLATE = """Extract 3-5 key points from this note in bullet point format:

{content}"""


@dataclass
class NoteSummary:
    path: str
    text: str
    key_points: List[str] = field(default_factory=list)
    failed: bool = False


def split_key_points(text: str, prefix: str) -> List[str]:
    """Return the lines of `text` that start with the bullet `prefix`, without it."""
    marker = prefix.strip() or prefix
    if not marker:
        return []
    points = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith(marker):
            point = stripped[len(marker):].strip()
            if point:
                points.append(point)
    return points


class NoteSummarizer:
    """Builds the note-summary list: a few key points per note in the vault."""

    def __init__(self, vault: Vault, client: CompletionClient, notifier: Notifier,
                 key_points_prefix: str = "- ") -> None:
        self.vault = vault
        self.client = client
        self.notifier = notifier
        self.key_points_prefix = key_points_prefix
        self._summaries: Optional[Dict[str, NoteSummary]] = None
        self._lock = threading.Lock()

    @property
    def summaries(self) -> Optional[Dict[str, NoteSummary]]:
        """Summaries from the last run, or None if notes were never summarized."""
        return self._summaries

    # PUBLIC_INTERFACE
    def summarize_note(self, path: str) -> Optional[NoteSummary]:
        """Summarize one note; empty notes give None, failed calls a placeholder summary."""
        content = self.vault.read_note(path)
        if not content.strip():
            return None
        try:
            text = self.client.complete(SUMMARY_PROMPT_TEMPLATE.format(content=content))
        except LearnError as exc:
            logger.error("Failed to extract key points for %s: %s", path, exc)
            self.notifier.warn(f"Failed to extract key points for {path}")
            return NoteSummary(path=path, text=SUMMARY_FAILED_TEXT, failed=True)
        logger.debug("Key points extracted for %s", path)
        return NoteSummary(path=path, text=text, key_points=split_key_points(text, self.key_points_prefix))

    # PUBLIC_INTERFACE
    def summarize_all(self) -> Dict[str, NoteSummary]:
        """Summarize every note in the vault, one at a time, replacing the previous list."""
        with self._lock:
            self.notifier.notify("Summarizing notes...")
            summaries: Dict[str, NoteSummary] = {}
            for path in self.vault.list_notes():
                try:
                    summary = self.summarize_note(path)
                except LearnError as exc:
                    logger.error("Skipping %s: %s", path, exc)
                    continue
                if summary is not None:
                    summaries[path] = summary
            self._summaries = summaries
            self.notifier.notify(f"Summarized {len(summaries)} notes")
            return summaries
