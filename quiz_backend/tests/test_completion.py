"""
Tests for the completion client
"""

from unittest.mock import Mock

import pytest
import requests

from notelearn.errors import NetworkError, SchemaError
from notelearn.services.completion import CompletionClient


def _response(status_code=200, payload=None, json_error=False):
    response = Mock(spec=requests.Response)
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def _client(response=None, error=None, **kwargs):
    session = Mock(spec=requests.Session)
    if error is not None:
        session.post.side_effect = error
        session.get.side_effect = error
    else:
        session.post.return_value = response
        session.get.return_value = response
    return CompletionClient(base_url="http://localhost:3001/", session=session, **kwargs), session


class TestComplete:
    """Tests for CompletionClient.complete."""

    def test_returns_message_content(self):
        payload = {"choices": [{"index": 0, "message": {"role": "assistant", "content": "[1, 2]"}}]}
        client, session = _client(_response(payload=payload), timeout=30, max_tokens=500)

        assert client.complete("hello") == "[1, 2]"

        args, kwargs = session.post.call_args
        assert args[0] == "http://localhost:3001/v1/chat/completions"
        assert kwargs["timeout"] == 30
        assert kwargs["json"]["messages"] == [{"role": "user", "content": "hello"}]
        assert kwargs["json"]["max_tokens"] == 500
        assert kwargs["json"]["model"] == "local model"

    def test_connection_refused(self):
        client, _ = _client(error=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(NetworkError, match="unreachable"):
            client.complete("hello")

    def test_timeout(self):
        client, _ = _client(error=requests.exceptions.ReadTimeout("slow"))
        with pytest.raises(NetworkError, match="timed out"):
            client.complete("hello")

    def test_error_status(self):
        client, _ = _client(_response(status_code=500))
        with pytest.raises(NetworkError, match="500"):
            client.complete("hello")

    def test_malformed_envelope(self):
        client, _ = _client(_response(payload={"unexpected": True}))
        with pytest.raises(SchemaError):
            client.complete("hello")

    def test_non_json_body(self):
        client, _ = _client(_response(json_error=True))
        with pytest.raises(SchemaError):
            client.complete("hello")


class TestIsAvailable:
    """Tests for CompletionClient.is_available."""

    def test_available(self):
        client, session = _client(_response(payload={"data": []}))
        assert client.is_available()
        assert session.get.call_args[0][0] == "http://localhost:3001/v1/models"

    def test_unavailable(self):
        client, _ = _client(error=requests.exceptions.ConnectionError("refused"))
        assert not client.is_available()
