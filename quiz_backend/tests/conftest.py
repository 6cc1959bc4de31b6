"""
Pytest configuration and fixtures
"""

import json
from pathlib import Path
from typing import List, Union

import pytest

from notelearn.errors import NetworkError
from notelearn.models import (
    ClozeQuestion,
    Definition,
    DistilledContent,
    FlashcardQuestion,
    MultipleChoiceQuestion,
    NoteRecord,
)
from notelearn.notices import Notifier
from notelearn.storage.json_store import NoteRecordStore
from notelearn.storage.vault import Vault


RECORD_ID = "3f2b8c1e-4d5a-4b6c-9e7f-0a1b2c3d4e5f"

DISTILLED_REPLY = json.dumps(
    {
        "facts": ["Water boils at 100 C at sea level."],
        "definitions": [{"term": "Evaporation", "definition": "Liquid turning into vapour."}],
        "quotes": [],
        "keyPoints": ["Boiling point depends on pressure."],
    }
)

QUIZ_REPLY = json.dumps(
    [
        {"type": "flashcard", "id": 1, "question": "What is evaporation?", "answer": "Liquid turning into vapour"},
        {"type": "cloze", "id": 2, "text": "Water boils at <CLOZE> C at sea level.", "answer": "100"},
        {
            "type": "multiple_choice",
            "id": 3,
            "question": "What changes the boiling point?",
            "options": ["Colour", "Pressure", "Volume"],
            "correct_index": 1,
        },
    ]
)


class FakeCompletionClient:
    """Completion client that replays scripted replies and records prompts."""

    def __init__(self, replies: List[Union[str, Exception]] = None, available: bool = True):
        self.replies = list(replies or [])
        self.prompts: List[str] = []
        self.available = available

    def is_available(self) -> bool:
        return self.available

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise NetworkError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    """Vault with a couple of notes."""
    root = tmp_path / "vault"
    (root / "topics").mkdir(parents=True)
    (root / "physics.md").write_text("# Physics\n\nWater boils at 100 C at sea level.\n", encoding="utf-8")
    (root / "topics" / "chemistry.md").write_text(
        "---\ntags: [science]\n---\n\nEvaporation is liquid turning into vapour.\n", encoding="utf-8"
    )
    (root / "empty.md").write_text("   \n", encoding="utf-8")
    return root


@pytest.fixture
def vault(vault_dir: Path) -> Vault:
    return Vault(str(vault_dir), excluded_dirs=["obsidian-learn-db"])


@pytest.fixture
def store(vault_dir: Path) -> NoteRecordStore:
    return NoteRecordStore(str(vault_dir / "obsidian-learn-db"))


@pytest.fixture
def notifier() -> Notifier:
    return Notifier()


@pytest.fixture
def fake_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def flashcard() -> FlashcardQuestion:
    return FlashcardQuestion(id=1, question="What is evaporation?", answer="Liquid turning into vapour")


@pytest.fixture
def cloze() -> ClozeQuestion:
    return ClozeQuestion(id=2, text="Water boils at <CLOZE> C.", answer="100")


@pytest.fixture
def multiple_choice() -> MultipleChoiceQuestion:
    return MultipleChoiceQuestion(
        id=3, question="What changes the boiling point?", options=["Colour", "Pressure", "Volume"], correct_index=1
    )


@pytest.fixture
def distilled() -> DistilledContent:
    return DistilledContent(
        facts=["Water boils at 100 C at sea level."],
        definitions=[Definition(term="Evaporation", definition="Liquid turning into vapour.")],
        key_points=["Boiling point depends on pressure."],
    )


@pytest.fixture
def empty_record() -> NoteRecord:
    return NoteRecord(id=RECORD_ID, source_path="physics.md", last_updated=1_000)


@pytest.fixture
def distilled_record(distilled: DistilledContent) -> NoteRecord:
    return NoteRecord(id=RECORD_ID, source_path="physics.md", last_updated=5_000, distilled=distilled)
