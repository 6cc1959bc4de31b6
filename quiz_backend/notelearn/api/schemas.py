from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


QuestionIdIn = Union[int, str]


# PUBLIC_INTERFACE
class NoticeOut(BaseModel):
    """A transient message for the user."""
    message: str = Field(..., description="Notice text.")
    level: str = Field(default="info", description="'info' or 'warning'.")
    created_at: str = Field(..., description="ISO-8601 creation time.")


# PUBLIC_INTERFACE
class NoteListOut(BaseModel):
    """Markdown notes in the vault."""
    notes: List[str] = Field(..., description="Vault-relative note paths.")
    notices: List[NoticeOut] = Field(default_factory=list)


# PUBLIC_INTERFACE
class NoteSummaryOut(BaseModel):
    """Key points extracted for one note."""
    path: str = Field(..., description="Vault-relative note path.")
    summary: str = Field(..., description="Raw summary text from the model.")
    key_points: List[str] = Field(default_factory=list, description="Bullet lines of the summary.")
    failed: bool = Field(default=False, description="True when extraction failed for this note.")


# PUBLIC_INTERFACE
class SummaryListOut(BaseModel):
    """The note-summary list view."""
    notes: List[str] = Field(..., description="Every note in the vault.")
    summaries: Dict[str, NoteSummaryOut] = Field(default_factory=dict, description="Summaries keyed by note path.")
    notices: List[NoticeOut] = Field(default_factory=list)


# PUBLIC_INTERFACE
class QuizRequest(BaseModel):
    """Input for creating a quiz from a note."""
    note_path: str = Field(..., description="Vault-relative path of the note.")
    force: bool = Field(default=False, description="Distill the note again even if cached content is fresh.")


# PUBLIC_INTERFACE
class AnswerIn(BaseModel):
    question_id: QuestionIdIn = Field(..., description="Question identifier.")
    value: Union[int, str] = Field(..., description="Option index for multiple choice, free text otherwise.")


# PUBLIC_INTERFACE
class RatingIn(BaseModel):
    question_id: QuestionIdIn = Field(..., description="Question identifier.")
    level: Union[int, str] = Field(..., description="1-4 or one of again/hard/good/easy.")


# PUBLIC_INTERFACE
class QuestionView(BaseModel):
    """
    A question as the quiz view shows it.

    `answer` and `correct_index` are only filled in once the question is revealed.
    Cloze text is split around its blank.
    """
    id: QuestionIdIn
    type: str
    question: Optional[str] = None
    cloze_prefix: Optional[str] = None
    cloze_suffix: Optional[str] = None
    options: Optional[List[str]] = None
    answer: Optional[str] = None
    correct_index: Optional[int] = None


# PUBLIC_INTERFACE
class RatingCountOut(BaseModel):
    level: str
    count: int
    percent: int


# PUBLIC_INTERFACE
class QuizResultsOut(BaseModel):
    """Results of a finished quiz."""
    mc_correct: int
    mc_total: int
    mc_percent: Optional[int] = None
    ratings: List[RatingCountOut] = Field(default_factory=list, description="Only levels that were used.")
    rated_total: int = 0
    summary: List[str] = Field(default_factory=list, description="Human-readable result lines.")


# PUBLIC_INTERFACE
class QuizSessionOut(BaseModel):
    """The quiz view: current session state after the last transition."""
    accepted: bool = Field(default=True, description="False when the requested transition was not allowed.")
    note_path: Optional[str] = None
    record_id: Optional[str] = None
    state: str
    current_index: int
    total: int
    question: Optional[QuestionView] = None
    answer: Optional[Union[int, str]] = Field(default=None, description="User's answer to the current question.")
    warning: Optional[str] = None
    results: Optional[QuizResultsOut] = None
    notices: List[NoticeOut] = Field(default_factory=list)
