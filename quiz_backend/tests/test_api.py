"""
Tests for the HTTP API
"""

import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from notelearn.api import main as api_main
from notelearn.api.main import app, build_services
from notelearn.config import Settings
from notelearn.errors import NetworkError
from notelearn.services.session import MC_ANSWER_WARNING

from conftest import DISTILLED_REPLY, QUIZ_REPLY, RECORD_ID, FakeCompletionClient


SUMMARY_REPLY = "- Water boils at 100 C\n- Pressure matters"


@pytest.fixture
def completion():
    return FakeCompletionClient([DISTILLED_REPLY, QUIZ_REPLY])


@pytest.fixture
def services(vault_dir, completion):
    services = build_services(Settings(vault_path=str(vault_dir)), client=completion)
    app.state.services = services
    yield services
    app.state.services = None


@pytest.fixture
def client(services):
    return TestClient(app)


def _messages(body):
    return [n["message"] for n in body["notices"]]


class TestSystemEndpoints:
    """Tests for health, notes and records."""

    def test_health(self, client, services, vault_dir):
        response = client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Healthy"
        assert body["completion_available"] is True
        assert (vault_dir / "obsidian-learn-db").is_dir()

    def test_list_notes(self, client):
        response = client.get("/notes")
        assert response.status_code == 200
        assert response.json()["notes"] == ["empty.md", "physics.md", "topics/chemistry.md"]

    def test_record_lookup(self, client):
        created = client.post("/quiz", json={"note_path": "physics.md"}).json()

        response = client.get(f"/records/{created['record_id']}")

        assert response.status_code == 200
        body = response.json()
        assert body["uuid"] == created["record_id"]
        assert body["notePath"] == "physics.md"
        assert body["distilledContent"]["keyPoints"] == ["Boiling point depends on pressure."]
        assert len(body["quizData"]) == 3

    def test_record_not_found(self, client):
        assert client.get(f"/records/{RECORD_ID}").status_code == 404

    def test_record_bad_identifier(self, client):
        assert client.get("/records/not-a-uuid").status_code == 400


class TestSummaries:
    """Tests for the note summary list."""

    def test_summarized_on_first_open(self, client, completion):
        completion.replies = [SUMMARY_REPLY, SUMMARY_REPLY]

        body = client.get("/summaries").json()

        assert body["notes"] == ["empty.md", "physics.md", "topics/chemistry.md"]
        assert body["summaries"]["physics.md"]["key_points"] == ["Water boils at 100 C", "Pressure matters"]
        assert "empty.md" not in body["summaries"]
        assert _messages(body) == ["Summarizing notes...", "Summarized 2 notes"]

        # Second open reuses the list
        client.get("/summaries")
        assert len(completion.prompts) == 2

    def test_summarize_on_open_disabled(self, vault_dir, completion):
        services = build_services(Settings(vault_path=str(vault_dir), summarize_on_open=False), client=completion)
        app.state.services = services
        try:
            body = TestClient(app).get("/summaries").json()
        finally:
            app.state.services = None
        assert body["summaries"] == {}
        assert completion.prompts == []

    def test_failed_summary_is_flagged(self, client, completion):
        completion.replies = [NetworkError("refused"), SUMMARY_REPLY]
        body = client.post("/summaries").json()
        assert body["summaries"]["physics.md"]["failed"] is True
        assert body["summaries"]["physics.md"]["summary"] == "Failed to extract key points - API error"


class TestQuizFlow:
    """Tests for creating and playing a quiz over HTTP."""

    def test_full_quiz(self, client):
        response = client.post("/quiz", json={"note_path": "physics.md"})
        assert response.status_code == 201
        body = response.json()
        assert body["state"] == "answering"
        assert body["total"] == 3
        assert body["note_path"] == "physics.md"
        assert body["question"]["type"] == "flashcard"
        assert body["question"]["answer"] is None
        assert "Quiz with 3 questions created for physics" in _messages(body)

        body = client.post("/quiz/reveal").json()
        assert body["state"] == "revealed"
        assert body["question"]["answer"] == "Liquid turning into vapour"

        body = client.post("/quiz/rate", json={"question_id": 1, "level": "good"}).json()
        assert body["accepted"]
        assert body["current_index"] == 1
        assert body["question"]["type"] == "cloze"
        assert body["question"]["cloze_prefix"] == "Water boils at "
        assert body["question"]["cloze_suffix"] == " C at sea level."
        assert body["question"]["answer"] is None

        client.post("/quiz/reveal")
        body = client.post("/quiz/rate", json={"question_id": 2, "level": 4}).json()
        assert body["question"]["type"] == "multiple_choice"
        assert body["question"]["options"] == ["Colour", "Pressure", "Volume"]
        assert body["question"]["correct_index"] is None

        body = client.post("/quiz/reveal").json()
        assert not body["accepted"]
        assert body["warning"] == MC_ANSWER_WARNING

        body = client.post("/quiz/answer", json={"question_id": 3, "value": 1}).json()
        assert body["accepted"]
        assert body["answer"] == 1

        body = client.post("/quiz/reveal").json()
        assert body["question"]["correct_index"] == 1

        body = client.post("/quiz/advance").json()
        assert body["state"] == "finished"
        assert body["question"] is None
        assert body["results"]["mc_correct"] == 1
        assert body["results"]["summary"] == [
            "Multiple Choice: 1/1 correct (100%)",
            "GOOD: 1 (50%)",
            "EASY: 1 (50%)",
        ]

        body = client.post("/quiz/restart").json()
        assert body["state"] == "answering"
        assert body["current_index"] == 0
        assert body["results"] is None

    def test_rejected_transition_is_reported(self, client):
        client.post("/quiz", json={"note_path": "physics.md"})
        body = client.post("/quiz/advance").json()
        assert not body["accepted"]
        assert body["current_index"] == 0

    def test_refresh_distills_again(self, client, completion):
        client.post("/quiz", json={"note_path": "physics.md"})
        completion.replies = [DISTILLED_REPLY, QUIZ_REPLY]

        response = client.post("/quiz/refresh")

        assert response.status_code == 201
        assert response.json()["state"] == "answering"
        assert len(completion.prompts) == 4

    def test_no_quiz_loaded(self, client):
        assert client.get("/quiz").status_code == 404
        assert client.post("/quiz/reveal").status_code == 404
        assert client.post("/quiz/refresh").status_code == 404

    @pytest.mark.parametrize("note_path", ["missing.md", "topics", "image.png"])
    def test_unknown_note(self, client, note_path):
        response = client.post("/quiz", json={"note_path": note_path})
        assert response.status_code == 404
        assert "No note to create quiz from" in _messages(response.json())

    def test_path_outside_vault(self, client):
        assert client.post("/quiz", json={"note_path": "../secret.md"}).status_code == 400

    def test_note_path_is_normalized(self, client, services):
        body = client.post("/quiz", json={"note_path": "./topics/../physics.md"}).json()
        assert body["note_path"] == "physics.md"
        assert services.controller.note_path == "physics.md"

    def test_busy_note_under_another_spelling(self, client, services):
        with services.pipeline.guard.claim("note:physics.md"):
            response = client.post("/quiz", json={"note_path": "./physics.md"})
        assert response.status_code == 409

    def test_generation_failure_opens_no_quiz(self, client, completion, services):
        completion.replies = [NetworkError("refused")]

        response = client.post("/quiz", json={"note_path": "physics.md"})

        assert response.status_code == 502
        assert "Failed to distill note content - API error" in _messages(response.json())
        assert not services.controller.has_session

    def test_busy_note(self, client, services):
        with services.pipeline.guard.claim("note:physics.md"):
            response = client.post("/quiz", json={"note_path": "physics.md"})
        assert response.status_code == 409
        assert "A quiz for physics is already being prepared" in _messages(response.json())

    def test_new_quiz_replaces_open_one(self, client, completion):
        client.post("/quiz", json={"note_path": "physics.md"})
        client.post("/quiz/reveal")
        completion.replies = [DISTILLED_REPLY, QUIZ_REPLY]

        body = client.post("/quiz", json={"note_path": "topics/chemistry.md"}).json()

        assert body["note_path"] == "topics/chemistry.md"
        assert body["state"] == "answering"


class TestServiceWiring:
    """Tests for lazy service construction."""

    def test_concurrent_first_requests_share_services(self, monkeypatch):
        built = []

        def slow_build(settings):
            time.sleep(0.05)
            services = object()
            built.append(services)
            return services

        monkeypatch.setattr(api_main, "build_services", slow_build)
        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: api_main.get_services(request), range(8)))

        assert len(built) == 1
        assert all(result is built[0] for result in results)
