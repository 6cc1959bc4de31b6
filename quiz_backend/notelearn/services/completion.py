"""
Client for a locally hosted, OpenAI-compatible chat-completions endpoint
(LM Studio, llama.cpp server, or a proxy in front of them).
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from notelearn.errors import NetworkError, SchemaError


logger = logging.getLogger(__name__)


class CompletionClient:
    """
    Text-in/text-out access to the local language model.

    Example:
        client = CompletionClient("http://localhost:3001")
        text = client.complete("Extract 3-5 key points from this note: ...")
    """

    # PUBLIC_INTERFACE
    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        model: str = "local model",
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the completion client.

        Args:
            base_url: Server URL; requests go to {base_url}/v1/chat/completions
            model: Model name sent with every request
            temperature: Sampling temperature
            max_tokens: Completion length cap
            timeout: Request timeout (seconds); a hung server becomes a NetworkError
            session: Optional requests session to reuse connections
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._http = session or requests.Session()

    def is_available(self) -> bool:
        """Check whether the completion server answers at all."""
        try:
            r = self._http.get(f"{self.base_url}/v1/models", timeout=min(self.timeout, 5))
            return r.status_code == 200
        except requests.exceptions.RequestException:
            return False

    # PUBLIC_INTERFACE
    def complete(self, prompt: str) -> str:
        """
        Send `prompt` as a single user message and return the reply text.

        Raises:
            NetworkError: connection refused, timeout, or non-2xx status.
            SchemaError: the server replied with something that is not a chat completion.
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        url = f"{self.base_url}/v1/chat/completions"
        logger.debug("Calling completion endpoint %s (%d prompt chars)", url, len(prompt))

        try:
            r = self._http.post(url, json=payload, timeout=self.timeout)
            r.raise_for_status()
        except requests.exceptions.ConnectionError as e:
            logger.error("Connection refused by %s - is the model server running?", self.base_url)
            raise NetworkError(f"Completion server unreachable at {self.base_url}") from e
        except requests.exceptions.Timeout as e:
            logger.error("Completion request timed out after %ss", self.timeout)
            raise NetworkError(f"Completion request timed out after {self.timeout}s") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "unknown"
            logger.error("Completion endpoint returned status %s", status)
            raise NetworkError(f"Completion endpoint returned status {status}") from e
        except requests.exceptions.RequestException as e:
            logger.error("Completion request failed: %s", e)
            raise NetworkError(f"Completion request failed: {e}") from e

        logger.debug("Completion response status: %s", r.status_code)
        return self._message_content(r)

    @staticmethod
    def _message_content(response: requests.Response) -> str:
        try:
            data = response.json()
            choices: List[Dict[str, Any]] = data["choices"]
            content = choices[0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise SchemaError("Completion response is not a chat completion") from e
        if not isinstance(content, str):
            raise SchemaError("Completion message content is not text")
        return content
