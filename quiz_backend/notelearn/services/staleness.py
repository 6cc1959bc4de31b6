"""Decides whether a note's cached distilled content can be reused."""
from typing import Optional

from notelearn.models import NoteRecord


REASON_EMPTY = "no existing content"
REASON_CHANGED = "note content has changed"
REASON_FORCED = "forced"


# PUBLIC_INTERFACE
def redistill_reason(record: NoteRecord, note_modified_time: int, force: bool = False) -> Optional[str]:
    """
    Return why the note must be distilled again, or None if the cache is usable.

    Args:
        record: The note's sidecar record.
        note_modified_time: Note modification time, epoch milliseconds.
        force: Explicit request to distill regardless of the cache.
    """
    if record.distilled.is_empty():
        return REASON_EMPTY
    if note_modified_time > record.last_updated:
        return REASON_CHANGED
    if force:
        return REASON_FORCED
    return None


# PUBLIC_INTERFACE
def should_redistill(record: NoteRecord, note_modified_time: int, force: bool = False) -> bool:
    """True when distilled content is empty, older than the note, or a refresh is forced."""
    return redistill_reason(record, note_modified_time, force) is not None
