"""
Quiz session state machine.

A session plays one immutable question list. Each question goes through
ANSWERING -> REVEALED, then either straight to advance() (multiple choice)
or through rate() (flashcard and cloze, which are self-rated). advance() on
the last question enters FINISHED, where results are computed.

Invalid transitions are rejected (the method returns False and nothing
changes); they never raise.
"""
import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from notelearn.errors import NoActiveQuizError
from notelearn.models import MultipleChoiceQuestion, Question, QuestionId, is_self_rated


logger = logging.getLogger(__name__)

MC_ANSWER_WARNING = "Please select an answer before checking."

AnswerValue = Union[int, str]


class QuizState(str, Enum):
    ANSWERING = "answering"
    REVEALED = "revealed"
    FINISHED = "finished"


class Rating(IntEnum):
    """Anki-style self-rating levels, lowest to highest."""
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


def _percent(count: int, total: int) -> int:
    # Round half up, so 12.5% shows as 13%
    return int(math.floor(count * 100 / total + 0.5))


def coerce_rating(level: Union[Rating, int, str]) -> Optional[Rating]:
    """Map a level given as Rating, 1-4, or a name such as "good" to a Rating."""
    if isinstance(level, bool):
        return None
    if isinstance(level, int):
        try:
            return Rating(level)
        except ValueError:
            return None
    if isinstance(level, str):
        return Rating.__members__.get(level.strip().upper())
    return None


@dataclass(frozen=True)
class QuizResults:
    """Score for multiple-choice questions plus the self-rating histogram."""

    mc_correct: int
    mc_total: int
    rating_counts: Dict[Rating, int] = field(default_factory=dict)

    @property
    def mc_percent(self) -> Optional[int]:
        if not self.mc_total:
            return None
        return _percent(self.mc_correct, self.mc_total)

    @property
    def rated_total(self) -> int:
        return sum(self.rating_counts.values())

    @property
    def has_ratings(self) -> bool:
        return self.rated_total > 0

    def rating_percentages(self) -> Dict[Rating, int]:
        total = self.rated_total
        return {rating: _percent(count, total) for rating, count in self.rating_counts.items()}

    def summary_lines(self) -> List[str]:
        lines: List[str] = []
        if self.mc_total:
            lines.append(f"Multiple Choice: {self.mc_correct}/{self.mc_total} correct ({self.mc_percent}%)")
        if self.has_ratings:
            percentages = self.rating_percentages()
            for rating, count in self.rating_counts.items():
                lines.append(f"{rating.name}: {count} ({percentages[rating]}%)")
        else:
            lines.append("No items rated")
        return lines


def score(questions: Sequence[Question], answers: Dict[QuestionId, AnswerValue],
          ratings: Dict[QuestionId, Rating]) -> QuizResults:
    """Derive results from the recorded answers and ratings."""
    mc_questions = [q for q in questions if isinstance(q, MultipleChoiceQuestion)]
    mc_correct = sum(1 for q in mc_questions if answers.get(q.id) == q.correct_index)

    counts: Dict[Rating, int] = {}
    for rating in Rating:
        count = sum(1 for value in ratings.values() if value == rating)
        if count:
            counts[rating] = count
    return QuizResults(mc_correct=mc_correct, mc_total=len(mc_questions), rating_counts=counts)


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a session, for rendering."""

    state: QuizState
    questions: Tuple[Question, ...]
    current_index: int
    answers: Dict[QuestionId, AnswerValue]
    ratings: Dict[QuestionId, Rating]
    revealed: bool
    warning: Optional[str]
    results: Optional[QuizResults]

    @property
    def current_question(self) -> Question:
        return self.questions[self.current_index]


class QuizSession:
    """In-progress quiz over one question list. Never persisted."""

    def __init__(self, questions: Sequence[Question]) -> None:
        self.load_questions(questions)

    # PUBLIC_INTERFACE
    def load_questions(self, questions: Sequence[Question]) -> None:
        """
        Start over with `questions`, discarding all progress.

        Raises:
            ValueError: `questions` is empty. Callers must not open a quiz
                without questions.
        """
        questions = tuple(questions)
        if not questions:
            raise ValueError("Cannot start a quiz without questions")
        self.questions: Tuple[Question, ...] = questions
        self._reset()

    def _reset(self) -> None:
        self.current_index = 0
        self.answers: Dict[QuestionId, AnswerValue] = {}
        self.ratings: Dict[QuestionId, Rating] = {}
        self.state = QuizState.ANSWERING
        self.warning: Optional[str] = None
        self._results: Optional[QuizResults] = None

    @property
    def current_question(self) -> Question:
        return self.questions[self.current_index]

    @property
    def revealed(self) -> bool:
        return self.state == QuizState.REVEALED

    @property
    def finished(self) -> bool:
        return self.state == QuizState.FINISHED

    def find_question(self, question_id: QuestionId) -> Optional[Question]:
        # Ids may arrive as "3" for a question stored with id 3
        for question in self.questions:
            if question.id == question_id or str(question.id) == str(question_id):
                return question
        return None

    def _reject(self, transition: str, reason: str) -> bool:
        logger.debug("Rejected %s in state %s: %s", transition, self.state.value, reason)
        return False

    # PUBLIC_INTERFACE
    def record_answer(self, question_id: QuestionId, value: AnswerValue) -> bool:
        """Store the user's answer: option index for multiple choice, text otherwise."""
        if self.state != QuizState.ANSWERING:
            return self._reject("record_answer", "answers can only change while answering")
        question = self.find_question(question_id)
        if question is None:
            return self._reject("record_answer", f"unknown question {question_id!r}")

        if isinstance(question, MultipleChoiceQuestion):
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < len(question.options):
                return self._reject("record_answer", f"invalid option {value!r}")
        elif not isinstance(value, str):
            return self._reject("record_answer", "self-rated answers are free text")

        self.answers[question.id] = value
        self.warning = None
        return True

    # PUBLIC_INTERFACE
    def reveal(self) -> bool:
        """Show the current answer. Multiple choice needs a selected option first."""
        if self.state != QuizState.ANSWERING:
            return self._reject("reveal", "nothing to reveal")
        question = self.current_question
        if isinstance(question, MultipleChoiceQuestion) and question.id not in self.answers:
            self.warning = MC_ANSWER_WARNING
            return self._reject("reveal", "no option selected")

        self.state = QuizState.REVEALED
        self.warning = None
        return True

    # PUBLIC_INTERFACE
    def rate(self, question_id: QuestionId, level: Union[Rating, int, str]) -> bool:
        """Record a self-rating for the revealed flashcard or cloze question, then advance."""
        if self.state != QuizState.REVEALED:
            return self._reject("rate", "answer not revealed")
        question = self.current_question
        if not is_self_rated(question):
            return self._reject("rate", "multiple choice questions are scored, not rated")
        if self.find_question(question_id) is not question:
            return self._reject("rate", f"question {question_id!r} is not the current question")
        rating = coerce_rating(level)
        if rating is None:
            return self._reject("rate", f"unknown rating {level!r}")

        self.ratings[question.id] = rating
        self._advance()
        return True

    # PUBLIC_INTERFACE
    def advance(self) -> bool:
        """Move past a revealed question; self-rated questions must be rated first."""
        if self.state != QuizState.REVEALED:
            return self._reject("advance", "answer not revealed")
        question = self.current_question
        if is_self_rated(question) and question.id not in self.ratings:
            return self._reject("advance", "rate the question before moving on")
        self._advance()
        return True

    def _advance(self) -> None:
        self.warning = None
        if self.current_index >= len(self.questions) - 1:
            self.state = QuizState.FINISHED
            self._results = score(self.questions, self.answers, self.ratings)
            logger.info("Quiz finished: %s", "; ".join(self._results.summary_lines()))
            return
        self.current_index += 1
        self.state = QuizState.ANSWERING

    # PUBLIC_INTERFACE
    def restart(self) -> bool:
        """Replay the same questions from the start with no answers or ratings."""
        if self.state != QuizState.FINISHED:
            return self._reject("restart", "quiz is not finished")
        self._reset()
        return True

    # PUBLIC_INTERFACE
    def results(self) -> Optional[QuizResults]:
        """Results of a finished quiz, or None while it is still running."""
        return self._results if self.finished else None

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            questions=self.questions,
            current_index=self.current_index,
            answers=dict(self.answers),
            ratings=dict(self.ratings),
            revealed=self.revealed,
            warning=self.warning,
            results=self.results(),
        )


class QuizController:
    """
    Owns the quiz currently shown to the user.

    Loading questions always replaces the previous session. Transitions are
    serialised so two requests cannot interleave on one session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._session: Optional[QuizSession] = None
        self.note_path: Optional[str] = None
        self.record_id: Optional[str] = None

    # PUBLIC_INTERFACE
    def load(self, questions: Sequence[Question], note_path: Optional[str] = None,
             record_id: Optional[str] = None) -> SessionSnapshot:
        session = QuizSession(questions)
        with self._lock:
            self._session = session
            self.note_path = note_path
            self.record_id = record_id
            return session.snapshot()

    @property
    def has_session(self) -> bool:
        return self._session is not None

    # PUBLIC_INTERFACE
    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._require().snapshot()

    # PUBLIC_INTERFACE
    def apply(self, transition: Callable[[QuizSession], bool]) -> Tuple[bool, SessionSnapshot]:
        """Run one transition on the current session and return (accepted, snapshot)."""
        with self._lock:
            session = self._require()
            accepted = transition(session)
            return accepted, session.snapshot()

    def clear(self) -> None:
        with self._lock:
            self._session = None
            self.note_path = None
            self.record_id = None

    def _require(self) -> QuizSession:
        if self._session is None:
            raise NoActiveQuizError("No quiz is loaded")
        return self._session
