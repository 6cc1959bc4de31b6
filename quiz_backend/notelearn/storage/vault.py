import logging
import os
import re
import uuid
from pathlib import Path
from typing import List, Optional

from notelearn.errors import StorageError
from notelearn.models import CANONICAL_ID_REGEX


logger = logging.getLogger(__name__)

ID_KEY = "uuid"
NOTE_SUFFIX = ".md"

# Frontmatter: a "---" line at the very start of the note, closed by the next "---" line.
_FRONTMATTER_REGEX = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*\r?$", re.DOTALL | re.MULTILINE)
_ID_LINE_REGEX = re.compile(rf"^{ID_KEY}:[ \t]*(.*?)[ \t]*\r?$", re.MULTILINE)


class Vault:
    """
    A directory of markdown notes.

    All paths taken and returned are relative to the vault root, with forward
    slashes. Filesystem failures are raised as StorageError.
    """

    # PUBLIC_INTERFACE
    def __init__(self, root: str, excluded_dirs: Optional[List[str]] = None) -> None:
        self.root = Path(root).resolve()
        self.excluded_dirs = [d.strip("/") for d in (excluded_dirs or []) if d.strip("/")]

    def resolve(self, rel_path: str) -> Path:
        """Return the absolute path for `rel_path`, refusing paths outside the vault."""
        target = (self.root / rel_path).resolve()
        try:
            target.relative_to(self.root)
        except ValueError:
            raise StorageError(f"Path escapes the vault: {rel_path}") from None
        return target

    # PUBLIC_INTERFACE
    def relative_path(self, rel_path: str) -> str:
        """Canonical vault-relative spelling of `rel_path`, e.g. "./a/../b.md" -> "b.md"."""
        return self.resolve(rel_path).relative_to(self.root).as_posix()

    # PUBLIC_INTERFACE
    def exists(self, rel_path: str) -> bool:
        return self.resolve(rel_path).exists()

    # PUBLIC_INTERFACE
    def read_note(self, rel_path: str) -> str:
        try:
            return self.resolve(rel_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Could not read note {rel_path}: {exc}") from exc

    # PUBLIC_INTERFACE
    def write_note(self, rel_path: str, content: str) -> None:
        try:
            self.resolve(rel_path).write_text(content, encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Could not write note {rel_path}: {exc}") from exc

    # PUBLIC_INTERFACE
    def note_modified_time(self, rel_path: str) -> int:
        """Last modification time of the note in epoch milliseconds."""
        try:
            return self.resolve(rel_path).stat().st_mtime_ns // 1_000_000
        except OSError as exc:
            raise StorageError(f"Could not stat note {rel_path}: {exc}") from exc

    # PUBLIC_INTERFACE
    def list_notes(self) -> List[str]:
        """Return every markdown note in the vault, sorted by path."""
        notes: List[str] = []
        if not self.root.is_dir():
            return notes
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            # Prune hidden folders and the sidecar folder in place
            dirnames[:] = [
                d for d in dirnames
                if not d.startswith(".") and _join(rel_dir, d) not in self.excluded_dirs
            ]
            for name in filenames:
                if name.endswith(NOTE_SUFFIX):
                    notes.append(_join(rel_dir, name))
        notes.sort()
        return notes


def _join(rel_dir: str, name: str) -> str:
    return name if rel_dir == "." else f"{rel_dir}/{name}"


def read_identifier(content: str) -> Optional[str]:
    """Return the canonical identifier from the note's frontmatter, if it has one."""
    match = _FRONTMATTER_REGEX.match(content)
    if not match:
        return None
    id_match = _ID_LINE_REGEX.search(match.group(1))
    if not id_match:
        return None
    value = id_match.group(1).strip("'\"")
    return value if CANONICAL_ID_REGEX.match(value) else None


def inject_identifier(content: str, record_id: str) -> str:
    """
    Return `content` with `uuid: <record_id>` in its frontmatter.

    Other frontmatter fields are kept as they are. A malformed uuid line is
    replaced; a note without frontmatter gets a new block in front of its body.
    """
    id_line = f"{ID_KEY}: {record_id}"
    match = _FRONTMATTER_REGEX.match(content)
    if not match:
        return f"---\n{id_line}\n---\n\n{content}"

    header = match.group(1)
    if _ID_LINE_REGEX.search(header):
        new_header = _ID_LINE_REGEX.sub(id_line, header, count=1)
    else:
        new_header = f"{id_line}\n{header}"
    return content[:match.start(1)] + new_header + content[match.end(1):]


# PUBLIC_INTERFACE
def ensure_identifier(vault: Vault, rel_path: str) -> str:
    """
    Return the note's stable identifier, writing a new one into it if missing.

    The note is only rewritten when no valid identifier is present, so it
    changes at most once over its lifetime.
    """
    content = vault.read_note(rel_path)
    existing = read_identifier(content)
    if existing:
        return existing

    record_id = str(uuid.uuid4())
    vault.write_note(rel_path, inject_identifier(content, record_id))
    logger.info("Added identifier %s to note %s", record_id, rel_path)
    return record_id
