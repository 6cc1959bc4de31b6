"""
"Create quiz from note" orchestration.

One run is a sequential chain: ensure identifier -> load or create the
sidecar -> staleness check -> optional distillation -> quiz generation.
Every stage catches its own errors, logs them and turns them into a
notice; the sidecar written by earlier stages is left intact so the user
can simply retry.

Only one run per note is allowed at a time. A second request for the same
note path, or for the same identifier under another path, is rejected
with PipelineBusyError instead of racing on the sidecar.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Iterator, List, Optional, Set

from notelearn.errors import DistillationError, PipelineBusyError, QuizGenerationError, StorageError
from notelearn.models import NoteRecord, Question
from notelearn.notices import Notifier
from notelearn.services.distiller import Distiller
from notelearn.services.quiz_generator import QuizGenerator
from notelearn.services.staleness import redistill_reason
from notelearn.storage.json_store import NoteRecordStore
from notelearn.storage.vault import Vault, ensure_identifier


logger = logging.getLogger(__name__)


@dataclass
class QuizRun:
    """Outcome of one pipeline run. `questions` is empty when the run failed."""

    note_path: str
    record: Optional[NoteRecord] = None
    questions: List[Question] = field(default_factory=list)
    redistill_reason: Optional[str] = None
    distilled: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return bool(self.questions)


class RunGuard:
    """Set of keys with a run in flight."""

    def __init__(self) -> None:
        self._active: Set[str] = set()
        self._lock = threading.Lock()

    @contextmanager
    def claim(self, key: str) -> Iterator[None]:
        with self._lock:
            if key in self._active:
                raise PipelineBusyError(key)
            self._active.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(key)

    def is_active(self, key: str) -> bool:
        with self._lock:
            return key in self._active


class QuizPipeline:
    """Turns a note into a list of quiz questions, reusing distilled content when it is fresh."""

    def __init__(
        self,
        vault: Vault,
        store: NoteRecordStore,
        distiller: Distiller,
        generator: QuizGenerator,
        notifier: Notifier,
        always_redistill: bool = False,
        guard: Optional[RunGuard] = None,
    ) -> None:
        self.vault = vault
        self.store = store
        self.distiller = distiller
        self.generator = generator
        self.notifier = notifier
        self.always_redistill = always_redistill
        self.guard = guard or RunGuard()

    # PUBLIC_INTERFACE
    def run(self, note_path: str, force: bool = False) -> QuizRun:
        """
        Build quiz questions for the note at `note_path`.

        Args:
            note_path: Vault-relative path of the note.
            force: Distill again even if the cached content is fresh.

        Returns:
            QuizRun: questions on success; otherwise `error` is set and
            `questions` is empty, and no quiz must be opened. `note_path`
            on the run is the canonical vault-relative path.

        Raises:
            PipelineBusyError: a run for this note is already in progress.
        """
        try:
            note_path = self.vault.relative_path(note_path)
        except StorageError as exc:
            return self._fail(QuizRun(note_path=note_path), "Failed to process note", exc)
        run = QuizRun(note_path=note_path)
        name = PurePosixPath(note_path).stem
        try:
            with self.guard.claim(f"note:{note_path}"):
                self.notifier.notify(f"Processing {name}...")
                try:
                    record_id = ensure_identifier(self.vault, note_path)
                except StorageError as exc:
                    return self._fail(run, "Failed to process note", exc)
                with self.guard.claim(f"record:{record_id}"):
                    return self._run_for_record(run, name, record_id, force)
        except PipelineBusyError:
            self.notifier.warn(f"A quiz for {name} is already being prepared")
            raise

    def _run_for_record(self, run: QuizRun, name: str, record_id: str, force: bool) -> QuizRun:
        try:
            record = self.store.load_or_create(record_id, run.note_path)
            modified = self.vault.note_modified_time(run.note_path)
        except StorageError as exc:
            return self._fail(run, "Failed to load note data", exc)
        # Identity is the uuid; the path is only kept for display
        record.source_path = run.note_path
        run.record = record

        reason = redistill_reason(record, modified, force or self.always_redistill)
        run.redistill_reason = reason
        if reason:
            self.notifier.notify(f"Distilling content for {name} ({reason})...")
            try:
                record = self.distiller.distill(self.vault.read_note(run.note_path), record)
                run.record = record
                run.distilled = True
            except DistillationError as exc:
                self.notifier.warn("Failed to distill note content - API error")
                if record.distilled.is_empty():
                    return self._fail(run, "Nothing to build a quiz from", exc)
                logger.info("Falling back to cached distilled content for %s", run.note_path)
            except StorageError as exc:
                return self._fail(run, "Failed to save distilled content", exc)
        else:
            self.notifier.notify(f"Using existing distilled content for {name}")

        self.notifier.notify(f"Generating quiz questions for {name}...")
        try:
            run.questions = self.generator.generate(record)
        except QuizGenerationError as exc:
            return self._fail(run, "Failed to generate quiz questions", exc)
        except StorageError as exc:
            return self._fail(run, "Failed to save quiz questions", exc)

        self.notifier.notify(f"Quiz with {len(run.questions)} questions created for {name}")
        return run

    def _fail(self, run: QuizRun, message: str, exc: Exception) -> QuizRun:
        logger.error("%s for %s: %s", message, run.note_path, exc)
        self.notifier.warn(message)
        run.error = f"{message}: {exc}"
        run.questions = []
        return run
