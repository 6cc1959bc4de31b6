import logging
import threading
from dataclasses import asdict, dataclass
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from notelearn.api.schemas import (
    AnswerIn,
    NoteListOut,
    NoteSummaryOut,
    NoticeOut,
    QuestionView,
    QuizRequest,
    QuizResultsOut,
    QuizSessionOut,
    RatingCountOut,
    RatingIn,
    SummaryListOut,
)
from notelearn.config import Settings
from notelearn.errors import NoActiveQuizError, PipelineBusyError, StorageError
from notelearn.models import CANONICAL_ID_REGEX, ClozeQuestion, FlashcardQuestion, Question
from notelearn.notices import Notifier
from notelearn.services.completion import CompletionClient
from notelearn.services.distiller import Distiller
from notelearn.services.pipeline import QuizPipeline
from notelearn.services.quiz_generator import QuizGenerator
from notelearn.services.session import QuizController, QuizResults, SessionSnapshot
from notelearn.services.summarizer import NoteSummarizer
from notelearn.storage.json_store import NoteRecordStore
from notelearn.storage.vault import NOTE_SUFFIX, Vault

# Load environment variables from a .env file if present
load_dotenv()

logger = logging.getLogger(__name__)

_services_lock = threading.Lock()

openapi_tags = [
    {"name": "System", "description": "System and service endpoints"},
    {"name": "Notes", "description": "Vault notes, note summaries and sidecar records"},
    {"name": "Quiz", "description": "Quiz creation and the interactive quiz session"},
]

app = FastAPI(
    title="Note Learn Backend",
    description="Local backend that distills notes with a local language model and runs flashcard, cloze and multiple-choice quizzes.",
    version="0.1.0",
    openapi_tags=openapi_tags,
)

# CORS configuration to allow editor integration (adjust origins in env if needed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings.from_env().cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass
class LearnServices:
    """Everything the endpoints need, wired once per application."""

    settings: Settings
    vault: Vault
    store: NoteRecordStore
    client: CompletionClient
    notifier: Notifier
    pipeline: QuizPipeline
    summarizer: NoteSummarizer
    controller: QuizController


# PUBLIC_INTERFACE
def build_services(settings: Settings, client: Optional[CompletionClient] = None) -> LearnServices:
    """Wire vault, sidecar store, completion client and pipeline from `settings`."""
    vault = Vault(settings.vault_path, excluded_dirs=[settings.db_folder])
    store = NoteRecordStore(str(vault.root / settings.db_folder))
    client = client or CompletionClient(
        base_url=settings.completion_url,
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        timeout=settings.completion_timeout,
    )
    notifier = Notifier()
    pipeline = QuizPipeline(
        vault=vault,
        store=store,
        distiller=Distiller(client, store),
        generator=QuizGenerator(client, store),
        notifier=notifier,
        always_redistill=settings.always_redistill,
    )
    summarizer = NoteSummarizer(vault, client, notifier, key_points_prefix=settings.key_points_prefix)
    return LearnServices(
        settings=settings,
        vault=vault,
        store=store,
        client=client,
        notifier=notifier,
        pipeline=pipeline,
        summarizer=summarizer,
        controller=QuizController(),
    )


# PUBLIC_INTERFACE
def get_services(request: Request) -> LearnServices:
    """
    Return the application's services, building them from the environment on first use.

    Tests install their own by setting `app.state.services`.
    """
    services = getattr(request.app.state, "services", None)
    if services is None:
        # Built once per app; concurrent first requests must share one guard and controller
        with _services_lock:
            services = getattr(request.app.state, "services", None)
            if services is None:
                services = build_services(Settings.from_env())
                request.app.state.services = services
    return services


def _drain(services: LearnServices) -> List[NoticeOut]:
    return [NoticeOut(**asdict(n)) for n in services.notifier.drain()]


def _error_response(services: LearnServices, status_code: int, detail: str) -> JSONResponse:
    notices = [n.model_dump() for n in _drain(services)]
    return JSONResponse(status_code=status_code, content={"detail": detail, "notices": notices})


@app.exception_handler(StorageError)
def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage error: %s", exc)
    services = get_services(request)
    services.notifier.warn("Could not read or write note data")
    return _error_response(services, status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))


@app.exception_handler(NoActiveQuizError)
def _no_quiz_handler(request: Request, exc: NoActiveQuizError) -> JSONResponse:
    return _error_response(get_services(request), status.HTTP_404_NOT_FOUND, str(exc))


@app.exception_handler(PipelineBusyError)
def _busy_handler(request: Request, exc: PipelineBusyError) -> JSONResponse:
    return _error_response(get_services(request), status.HTTP_409_CONFLICT, str(exc))


def _question_view(question: Question, revealed: bool) -> QuestionView:
    if isinstance(question, FlashcardQuestion):
        return QuestionView(
            id=question.id,
            type=question.type,
            question=question.question,
            answer=question.answer if revealed else None,
        )
    if isinstance(question, ClozeQuestion):
        prefix, suffix = question.split_text()
        return QuestionView(
            id=question.id,
            type=question.type,
            cloze_prefix=prefix,
            cloze_suffix=suffix,
            answer=question.answer if revealed else None,
        )
    return QuestionView(
        id=question.id,
        type=question.type,
        question=question.question,
        options=list(question.options),
        correct_index=question.correct_index if revealed else None,
    )


def _results_out(results: QuizResults) -> QuizResultsOut:
    percentages = results.rating_percentages()
    return QuizResultsOut(
        mc_correct=results.mc_correct,
        mc_total=results.mc_total,
        mc_percent=results.mc_percent,
        ratings=[
            RatingCountOut(level=rating.name, count=count, percent=percentages[rating])
            for rating, count in results.rating_counts.items()
        ],
        rated_total=results.rated_total,
        summary=results.summary_lines(),
    )


def _session_out(services: LearnServices, snapshot: SessionSnapshot, accepted: bool = True) -> QuizSessionOut:
    """Project a session snapshot into the quiz view."""
    controller = services.controller
    question = None
    answer = None
    if snapshot.results is None:
        current = snapshot.current_question
        question = _question_view(current, snapshot.revealed)
        answer = snapshot.answers.get(current.id)
    return QuizSessionOut(
        accepted=accepted,
        note_path=controller.note_path,
        record_id=controller.record_id,
        state=snapshot.state.value,
        current_index=snapshot.current_index,
        total=len(snapshot.questions),
        question=question,
        answer=answer,
        warning=snapshot.warning,
        results=_results_out(snapshot.results) if snapshot.results is not None else None,
        notices=_drain(services),
    )


@app.get("/", summary="Health Check", tags=["System"])
def health_check(services: LearnServices = Depends(get_services)):
    """
    Health check endpoint.

    Returns:
        JSON payload with a 'Healthy' message, the vault and sidecar folder,
        and whether the completion server answers.
    """
    # Touch the store to ensure the sidecar folder exists on startup
    services.store.ensure_folder()
    return {
        "message": "Healthy",
        "vault": str(services.vault.root),
        "db_folder": services.store.folder,
        "completion_available": services.client.is_available(),
    }


@app.get("/notes", response_model=NoteListOut, summary="List notes", tags=["Notes"])
def list_notes(services: LearnServices = Depends(get_services)) -> NoteListOut:
    """Return every markdown note in the vault."""
    return NoteListOut(notes=services.vault.list_notes(), notices=_drain(services))


def _summary_list(services: LearnServices) -> SummaryListOut:
    summaries = services.summarizer.summaries or {}
    return SummaryListOut(
        notes=services.vault.list_notes(),
        summaries={
            path: NoteSummaryOut(path=path, summary=s.text, key_points=s.key_points, failed=s.failed)
            for path, s in summaries.items()
        },
        notices=_drain(services),
    )


@app.get("/summaries", response_model=SummaryListOut, summary="Note summary list", tags=["Notes"])
def get_summaries(services: LearnServices = Depends(get_services)) -> SummaryListOut:
    """
    Return the note-summary list.

    Notes are summarized on first access when summarize-on-open is enabled;
    otherwise the list holds the notes without summaries until POST /summaries.
    """
    if services.summarizer.summaries is None and services.settings.summarize_on_open:
        services.summarizer.summarize_all()
    return _summary_list(services)


@app.post("/summaries", response_model=SummaryListOut, summary="Summarize all notes", tags=["Notes"])
def summarize_notes(services: LearnServices = Depends(get_services)) -> SummaryListOut:
    """Summarize every note in the vault again and return the list."""
    services.summarizer.summarize_all()
    return _summary_list(services)


@app.get("/records/{record_id}", summary="Get sidecar record", tags=["Notes"])
def get_record(record_id: str, services: LearnServices = Depends(get_services)):
    """
    Return the sidecar record for a note identifier, in its on-disk layout.

    Raises:
        404 if no record exists, 400 if the identifier is malformed.
    """
    if not CANONICAL_ID_REGEX.match(record_id):
        return _error_response(services, status.HTTP_400_BAD_REQUEST, f"Not a valid record identifier: {record_id}")
    record = services.store.load(record_id)
    if record is None:
        return _error_response(services, status.HTTP_404_NOT_FOUND, "Record not found")
    return record.model_dump(mode="json", by_alias=True)


def _start_quiz(services: LearnServices, note_path: str, force: bool):
    run = services.pipeline.run(note_path, force=force)
    if not run.ok:
        # No quiz view without questions
        return _error_response(services, status.HTTP_502_BAD_GATEWAY, run.error or "Failed to generate quiz questions")
    snapshot = services.controller.load(run.questions, note_path=run.note_path, record_id=run.record.id)
    return _session_out(services, snapshot)


@app.post(
    "/quiz",
    response_model=QuizSessionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create quiz from a note",
    description="Distills the note if its cached content is missing or stale, generates questions and opens a new quiz session.",
    tags=["Quiz"],
)
def create_quiz(quiz_request: QuizRequest, services: LearnServices = Depends(get_services)):
    """
    Create a quiz from the note at `note_path`, replacing any open quiz.

    Returns 404 for an unknown note, 409 while a quiz for the same note is
    being prepared, and 502 when no questions could be generated.
    """
    try:
        note_path = services.vault.relative_path(quiz_request.note_path.strip().lstrip("/"))
        found = note_path.endswith(NOTE_SUFFIX) and services.vault.exists(note_path)
    except StorageError as exc:
        return _error_response(services, status.HTTP_400_BAD_REQUEST, str(exc))
    if not found:
        services.notifier.warn("No note to create quiz from")
        return _error_response(services, status.HTTP_404_NOT_FOUND, f"Note not found: {note_path}")
    return _start_quiz(services, note_path, quiz_request.force)


@app.post(
    "/quiz/refresh",
    response_model=QuizSessionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Rebuild the current quiz",
    tags=["Quiz"],
)
def refresh_quiz(services: LearnServices = Depends(get_services)):
    """Distill the current quiz's note again and generate a fresh quiz from it."""
    note_path = services.controller.note_path
    if note_path is None:
        raise NoActiveQuizError("No quiz is loaded")
    return _start_quiz(services, note_path, force=True)


@app.get("/quiz", response_model=QuizSessionOut, summary="Current quiz", tags=["Quiz"])
def get_quiz(services: LearnServices = Depends(get_services)) -> QuizSessionOut:
    """Return the quiz view for the current session."""
    return _session_out(services, services.controller.snapshot())


@app.post("/quiz/answer", response_model=QuizSessionOut, summary="Record an answer", tags=["Quiz"])
def record_answer(answer: AnswerIn, services: LearnServices = Depends(get_services)) -> QuizSessionOut:
    accepted, snapshot = services.controller.apply(lambda s: s.record_answer(answer.question_id, answer.value))
    return _session_out(services, snapshot, accepted)


@app.post("/quiz/reveal", response_model=QuizSessionOut, summary="Reveal the answer", tags=["Quiz"])
def reveal_answer(services: LearnServices = Depends(get_services)) -> QuizSessionOut:
    accepted, snapshot = services.controller.apply(lambda s: s.reveal())
    return _session_out(services, snapshot, accepted)


@app.post("/quiz/rate", response_model=QuizSessionOut, summary="Rate a revealed question", tags=["Quiz"])
def rate_question(rating: RatingIn, services: LearnServices = Depends(get_services)) -> QuizSessionOut:
    accepted, snapshot = services.controller.apply(lambda s: s.rate(rating.question_id, rating.level))
    return _session_out(services, snapshot, accepted)


@app.post("/quiz/advance", response_model=QuizSessionOut, summary="Go to the next question", tags=["Quiz"])
def advance_question(services: LearnServices = Depends(get_services)) -> QuizSessionOut:
    accepted, snapshot = services.controller.apply(lambda s: s.advance())
    return _session_out(services, snapshot, accepted)


@app.post("/quiz/restart", response_model=QuizSessionOut, summary="Restart a finished quiz", tags=["Quiz"])
def restart_quiz(services: LearnServices = Depends(get_services)) -> QuizSessionOut:
    accepted, snapshot = services.controller.apply(lambda s: s.restart())
    return _session_out(services, snapshot, accepted)
