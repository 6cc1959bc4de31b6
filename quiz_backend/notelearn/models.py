"""Pydantic models for note records, distilled content and quiz questions."""
import re
import time
from typing import Annotated, List, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


CLOZE_MARKER = "<CLOZE>"
CANONICAL_ID_REGEX = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")

QuestionId = Union[int, str]


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# PUBLIC_INTERFACE
class Definition(BaseModel):
    """A term and its definition extracted from a note."""
    term: str = Field(..., description="The defined term.")
    definition: str = Field(..., description="Definition of the term.")


# PUBLIC_INTERFACE
class DistilledContent(BaseModel):
    """Study material distilled from a note. List order is display order."""
    model_config = ConfigDict(populate_by_name=True)

    facts: List[str] = Field(default_factory=list, description="Factual statements.")
    definitions: List[Definition] = Field(default_factory=list, description="Term/definition pairs.")
    quotes: List[str] = Field(default_factory=list, description="Quoted material.")
    key_points: List[str] = Field(default_factory=list, alias="keyPoints", description="Main ideas.")

    def is_empty(self) -> bool:
        return not (self.facts or self.definitions or self.quotes or self.key_points)


class _QuestionBase(BaseModel):
    id: QuestionId = Field(..., description="Identifier, unique within one question set.")


# PUBLIC_INTERFACE
class FlashcardQuestion(_QuestionBase):
    """Question/answer pair, self-rated after reveal."""
    type: Literal["flashcard"] = "flashcard"
    question: str = Field(..., min_length=1)
    answer: str


# PUBLIC_INTERFACE
class ClozeQuestion(_QuestionBase):
    """Fill-in-the-blank question; `text` holds exactly one CLOZE_MARKER."""
    type: Literal["cloze"] = "cloze"
    text: str
    answer: str

    @field_validator("text")
    @classmethod
    def _single_blank(cls, value: str) -> str:
        count = value.count(CLOZE_MARKER)
        if count != 1:
            raise ValueError(f"cloze text must contain exactly one {CLOZE_MARKER} marker, found {count}")
        return value

    def split_text(self) -> Tuple[str, str]:
        """Return (prefix, suffix) around the blank."""
        prefix, _, suffix = self.text.partition(CLOZE_MARKER)
        return prefix, suffix


# PUBLIC_INTERFACE
class MultipleChoiceQuestion(_QuestionBase):
    """Question with ordered options and the index of the correct one."""
    type: Literal["multiple_choice"] = "multiple_choice"
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_index: int

    @model_validator(mode="after")
    def _index_in_range(self) -> "MultipleChoiceQuestion":
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct_index {self.correct_index} out of range for {len(self.options)} options"
            )
        return self


Question = Annotated[
    Union[FlashcardQuestion, ClozeQuestion, MultipleChoiceQuestion],
    Field(discriminator="type"),
]

QUESTION_ADAPTER = TypeAdapter(Question)
QUESTION_LIST_ADAPTER = TypeAdapter(List[Question])


def is_self_rated(question) -> bool:
    """Flashcard and cloze questions are rated by the user instead of scored."""
    return isinstance(question, (FlashcardQuestion, ClozeQuestion))


# PUBLIC_INTERFACE
class NoteRecord(BaseModel):
    """
    Persisted per-note state, stored as one sidecar JSON document.

    Field aliases keep the sidecar layout used by existing vaults:
    uuid, notePath, lastUpdated (epoch ms), distilledContent, quizData.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., alias="uuid", pattern=CANONICAL_ID_REGEX.pattern)
    source_path: str = Field(default="", alias="notePath")
    last_updated: int = Field(default_factory=now_ms, alias="lastUpdated")
    distilled: DistilledContent = Field(default_factory=DistilledContent, alias="distilledContent")
    quiz: List[Question] = Field(default_factory=list, alias="quizData")

    def bump_last_updated(self, timestamp: int) -> None:
        """Move last_updated forward to `timestamp`; it never moves backwards."""
        self.last_updated = max(self.last_updated, timestamp)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)
