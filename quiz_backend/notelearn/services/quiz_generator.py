import logging
from typing import Any, Callable, List

from pydantic import ValidationError

from notelearn.errors import NetworkError, QuizGenerationError, SchemaError
from notelearn.models import CLOZE_MARKER, QUESTION_LIST_ADAPTER, DistilledContent, NoteRecord, Question, now_ms
from notelearn.services.completion import CompletionClient
from notelearn.services.extraction import parse_structured_payload
from notelearn.storage.json_store import NoteRecordStore


logger = logging.getLogger(__name__)

QUIZ_PROMPT_TEMPLATE = """You are an expert educator creating quizzes from distilled note content.
Generate 3-5 questions based on the following distilled content using ONLY the following question formats:

1. Flashcard (question-answer pairs)
2. Cloze (fill-in-the-blank)
3. Multiple choice (with 4 options)

Return ONLY a valid JSON array of question objects using these exact formats:

[
{{
    "type": "flashcard",
    "id": 1,
    "question": "What is the capital of France?",
    "answer": "Paris"
}},
{{
    "type": "cloze",
    "id": 2,
    "text": "The capital of France is {marker}.",
    "answer": "Paris"
}},
{{
    "type": "multiple_choice",
    "id": 3,
    "question": "What is the largest planet in our solar system?",
    "options": ["Earth", "Saturn", "Jupiter", "Mars"],
    "correct_index": 2
}}
]

IMPORTANT FORMATTING:
- For cloze questions, always use exactly one {marker} tag to mark the deleted word(s)
- Give every question a different id
- Make all questions relevant to the content provided

DISTILLED CONTENT:

{sections}

Important: Return ONLY the JSON array with no additional text or markdown formatting."""


def _format_section(title: str, lines: List[str]) -> str:
    return f"{title}:\n" + "\n".join(lines)


# PUBLIC_INTERFACE
def build_quiz_prompt(distilled: DistilledContent) -> str:
    """Prompt asking for 3-5 flashcard, cloze or multiple-choice questions as a JSON array."""
    sections = "\n\n".join(
        [
            _format_section("Facts", distilled.facts),
            _format_section("Definitions", [f"{d.term}: {d.definition}" for d in distilled.definitions]),
            _format_section("Quotes", distilled.quotes),
            _format_section("Key Points", distilled.key_points),
        ]
    )
    return QUIZ_PROMPT_TEMPLATE.format(marker=CLOZE_MARKER, sections=sections)


def _unwrap_question_list(data: Any) -> Any:
    # Some models wrap the array as {"questions": [...]}
    if isinstance(data, dict) and isinstance(data.get("questions"), list):
        return data["questions"]
    return data


# PUBLIC_INTERFACE
def parse_questions(response: str) -> List[Question]:
    """
    Turn a model reply into a validated, non-empty question list.

    Raises:
        SchemaError: not JSON, not a list, empty, an element that is not one
            of the three question types, or duplicate question ids.
    """
    data = _unwrap_question_list(parse_structured_payload(response))
    if not isinstance(data, list):
        raise SchemaError(f"Expected a JSON array of questions, got {type(data).__name__}")
    if not data:
        raise SchemaError("Model returned no questions")
    try:
        questions = QUESTION_LIST_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise SchemaError(f"Questions do not match the supported formats: {exc}") from exc

    seen = set()
    for question in questions:
        key = str(question.id)
        if key in seen:
            raise SchemaError(f"Duplicate question id {question.id!r}")
        seen.add(key)
    return questions


class QuizGenerator:
    """Builds quiz questions from a record's distilled content with one completion call."""

    def __init__(
        self,
        client: CompletionClient,
        store: NoteRecordStore,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.client = client
        self.store = store
        self.clock = clock

    # PUBLIC_INTERFACE
    def generate(self, record: NoteRecord) -> List[Question]:
        """
        Generate questions for `record`, persist them, and return them.

        `record.quiz` and `record.last_updated` are only updated after the new
        sidecar has been written; on any failure the record is left as it was.

        Raises:
            QuizGenerationError: the model call failed or its reply was unusable.
            StorageError: the updated record could not be persisted.
        """
        prompt = build_quiz_prompt(record.distilled)
        try:
            response = self.client.complete(prompt)
            questions = parse_questions(response)
        except (NetworkError, SchemaError) as exc:
            logger.error("Failed to generate quiz questions for %s: %s", record.source_path or record.id, exc)
            raise QuizGenerationError(str(exc)) from exc

        updated = record.model_copy(deep=True)
        updated.quiz = questions
        updated.bump_last_updated(self.clock())
        self.store.persist(updated)

        record.quiz = updated.quiz
        record.last_updated = updated.last_updated
        logger.info("Generated %d quiz questions for %s", len(questions), record.source_path or record.id)
        return list(questions)
