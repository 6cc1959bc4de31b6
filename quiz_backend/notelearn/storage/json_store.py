import json
import logging
import os
import tempfile
from typing import Any, List, Optional

from pydantic import ValidationError

from notelearn.errors import StorageError
from notelearn.models import CANONICAL_ID_REGEX, QUESTION_ADAPTER, NoteRecord, Question, now_ms


logger = logging.getLogger(__name__)


class NoteRecordStore:
    """
    Sidecar JSON store: one document per note identifier, with atomic writes.

    Layout:
        <folder>/<uuid>.json  ->  { "uuid", "notePath", "lastUpdated",
                                    "distilledContent", "quizData" }

    Documents are always overwritten wholesale. Only one writer per
    identifier is expected at a time; the quiz pipeline enforces that.
    """

    # PUBLIC_INTERFACE
    def __init__(self, folder: str) -> None:
        """
        Initialize the store rooted at `folder`.

        The folder is created on first use if it does not exist yet.
        """
        self.folder = os.path.abspath(folder)

    # PUBLIC_INTERFACE
    def ensure_folder(self) -> None:
        """Create the sidecar folder if it is missing."""
        try:
            if not os.path.isdir(self.folder):
                os.makedirs(self.folder, exist_ok=True)
                logger.info("Created sidecar folder at %s", self.folder)
        except OSError as exc:
            raise StorageError(f"Could not create sidecar folder {self.folder}: {exc}") from exc

    # PUBLIC_INTERFACE
    def path_for(self, record_id: str) -> str:
        """Return the sidecar file path for an identifier."""
        if not CANONICAL_ID_REGEX.match(record_id or ""):
            raise StorageError(f"Not a valid record identifier: {record_id!r}")
        return os.path.join(self.folder, f"{record_id}.json")

    # PUBLIC_INTERFACE
    def exists(self, record_id: str) -> bool:
        return os.path.exists(self.path_for(record_id))

    # PUBLIC_INTERFACE
    def load(self, record_id: str) -> Optional[NoteRecord]:
        """
        Read the sidecar for `record_id`.

        Returns:
            NoteRecord | None: The record, or None when no sidecar exists.

        Raises:
            StorageError: The file could not be read, is not JSON, or does not
                hold a valid record. Broken sidecars are reported, never reset.
        """
        path = self.path_for(record_id)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Could not read sidecar {path}: {exc}") from exc

        if not isinstance(data, dict):
            raise StorageError(f"Sidecar {path} does not hold a JSON object")
        # Stored questions are checked one by one; only identity and distilled content must be valid
        quiz_data = data.pop("quizData", [])
        try:
            record = NoteRecord.model_validate(data)
        except ValidationError as exc:
            raise StorageError(f"Sidecar {path} does not hold a valid note record: {exc}") from exc
        if record.id != record_id:
            raise StorageError(f"Sidecar {path} belongs to {record.id}, expected {record_id}")
        record.quiz = self._cached_questions(path, quiz_data)
        return record

    def _cached_questions(self, path: str, quiz_data: Any) -> List[Question]:
        """Validate stored questions one by one, dropping the ones that no longer parse."""
        if not isinstance(quiz_data, list):
            logger.warning("Ignoring cached quiz in %s: expected a list, got %s", path, type(quiz_data).__name__)
            return []
        questions: List[Question] = []
        for position, item in enumerate(quiz_data):
            try:
                questions.append(QUESTION_ADAPTER.validate_python(item))
            except ValidationError as exc:
                logger.warning("Dropping cached question %d in %s: %s", position, path, exc)
        return questions

    # PUBLIC_INTERFACE
    def load_or_create(self, record_id: str, source_path: str = "") -> NoteRecord:
        """
        Return the record for `record_id`, creating and persisting an empty one if needed.

        Args:
            record_id: Canonical note identifier.
            source_path: Note location recorded on a newly created record.
        """
        record = self.load(record_id)
        if record is not None:
            return record

        record = NoteRecord(id=record_id, source_path=source_path, last_updated=now_ms())
        self.persist(record)
        logger.info("Created sidecar for %s (%s)", record_id, source_path or "unknown note")
        return record

    # PUBLIC_INTERFACE
    def persist(self, record: NoteRecord) -> None:
        """Serialize `record` and overwrite its sidecar document."""
        self.ensure_folder()
        self._atomic_write(self.path_for(record.id), record.to_json())

    def _atomic_write(self, path: str, payload: str) -> None:
        """
        Write text to a temporary file and atomically replace the target.

        This ensures that readers never see a partially-written file.
        """
        directory = os.path.dirname(path) or "."
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".record.", suffix=".tmp", dir=directory, text=True)
        except OSError as exc:
            raise StorageError(f"Could not write sidecar {path}: {exc}") from exc
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                tmp_file.write(payload)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            raise StorageError(f"Could not write sidecar {path}: {exc}") from exc
        finally:
            # If os.replace succeeded, tmp_path no longer exists; ignore errors
            try:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
            except OSError:
                pass
