import logging
from typing import Callable

from pydantic import ValidationError

from notelearn.errors import DistillationError, NetworkError, SchemaError
from notelearn.models import DistilledContent, NoteRecord, now_ms
from notelearn.services.completion import CompletionClient
from notelearn.services.extraction import parse_structured_payload
from notelearn.storage.json_store import NoteRecordStore


logger = logging.getLogger(__name__)

_DISTILLED_KEYS = ("facts", "definitions", "quotes", "keyPoints")

DISTILL_PROMPT_TEMPLATE = """You are an expert educator creating study materials from student notes.
Analyze the following note and extract the following information:

1. Facts: Extract factual statements
2. Definitions: Extract terms and their definitions
3. Quotes: Extract any quoted material
4. Key Points: Extract main ideas and important concepts

Return the result as a valid JSON object with this structure:

{{
    "facts": ["Fact 1", "Fact 2", ...],
    "definitions": [
        {{ "term": "Term 1", "definition": "Definition 1" }},
        {{ "term": "Term 2", "definition": "Definition 2" }},
        ...
    ],
    "quotes": ["Quote 1", "Quote 2", ...],
    "keyPoints": ["Key point 1", "Key point 2", ...]
}}

NOTE CONTENT:
<note>{content}</note>

Important: Return ONLY the JSON with no additional text or markdown formatting."""


# PUBLIC_INTERFACE
def build_distillation_prompt(note_content: str) -> str:
    """Prompt asking the model for facts, definitions, quotes and key points as one JSON object."""
    return DISTILL_PROMPT_TEMPLATE.format(content=note_content)


# PUBLIC_INTERFACE
def parse_distilled_content(response: str) -> DistilledContent:
    """
    Turn a model reply into DistilledContent.

    The payload must be a JSON object carrying at least one of the four
    collections; collections it leaves out are empty.

    Raises:
        SchemaError: not JSON, not an object, or wrongly shaped collections.
    """
    data = parse_structured_payload(response)
    if not isinstance(data, dict):
        raise SchemaError(f"Expected a JSON object of distilled content, got {type(data).__name__}")
    if not any(key in data for key in _DISTILLED_KEYS):
        raise SchemaError("Distilled content has none of: " + ", ".join(_DISTILLED_KEYS))
    try:
        return DistilledContent.model_validate(data)
    except ValidationError as exc:
        raise SchemaError(f"Distilled content does not match the expected shape: {exc}") from exc


class Distiller:
    """Extracts study material from a note with one completion call."""

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
    def distill(self, note_content: str, record: NoteRecord) -> NoteRecord:
        """
        Distill `note_content` into a new version of `record` and persist it.

        One completion call, no retries. The record passed in is never
        modified: on success an updated copy is returned; on failure
        DistillationError is raised and the caller keeps its record.

        Raises:
            DistillationError: the model call failed or its reply was unusable.
            StorageError: the updated record could not be persisted.
        """
        prompt = build_distillation_prompt(note_content)
        try:
            response = self.client.complete(prompt)
            distilled = parse_distilled_content(response)
        except (NetworkError, SchemaError) as exc:
            logger.error("Failed to distill note %s: %s", record.source_path or record.id, exc)
            raise DistillationError(str(exc)) from exc

        updated = record.model_copy(deep=True)
        updated.distilled = distilled
        updated.bump_last_updated(self.clock())
        self.store.persist(updated)
        logger.info(
            "Distilled %s: %d facts, %d definitions, %d quotes, %d key points",
            record.source_path or record.id,
            len(distilled.facts),
            len(distilled.definitions),
            len(distilled.quotes),
            len(distilled.key_points),
        )
        return updated
