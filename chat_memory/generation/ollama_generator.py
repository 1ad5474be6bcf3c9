"""
Ollama generator adapter for local LLM inference.

Implements BaseGenerator over the Ollama REST API (chat + embeddings).
"""

import time
from typing import Dict, List, Optional

import requests
import structlog

from chat_memory.errors import BackendUnavailableError
from chat_memory.generation.generator import (
    BaseGenerator,
    GeneratedResponse,
    GenerationConfig,
)


logger = structlog.get_logger(__name__)

EMPTY_REPLY = "Sorry, I could not generate a response."


class OllamaGenerator(BaseGenerator):
    """
    Generator that uses Ollama for local chat completion and embeddings.

    Ollama must be running locally (default: http://localhost:11434).
    Every transport failure surfaces as ``BackendUnavailableError``.
    """

    def __init__(
        self,
        model: str = "gemma:2b",
        embed_model: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        timeout: int = 60,
        config: Optional[GenerationConfig] = None,
        check_on_init: bool = False,
    ):
        """
        Initialize Ollama generator.

        Args:
            model: Default chat model (e.g., "gemma:2b", "llama3")
            embed_model: Default embedding model
            base_url: Ollama API base URL
            timeout: Request timeout in seconds
            config: Sampling options sent with every chat request
            check_on_init: Fail fast if the server is not reachable

        Raises:
            BackendUnavailableError: If ``check_on_init`` and Ollama is down
        """
        self.model = model
        self.embed_model = embed_model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.config = config or GenerationConfig()

        if check_on_init and not self.is_available():
            raise BackendUnavailableError(
                f"Ollama not reachable at {self.base_url}. "
                f"Please start Ollama with 'ollama serve' or check the URL."
            )

    def is_available(self) -> bool:
        """Check if Ollama server is running."""
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def _post(self, path: str, payload: dict) -> dict:
        """POST a JSON payload and return the decoded body."""
        url = f"{self.base_url}{path}"
        try:
            response = requests.post(url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise BackendUnavailableError(
                f"Ollama request to {path} timed out after {self.timeout}s"
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise BackendUnavailableError(
                f"Ollama request to {path} failed: {exc}. "
                f"Check if Ollama is running at {self.base_url}."
            ) from exc

        if response.status_code != 200:
            raise BackendUnavailableError(
                f"Ollama API returned status {response.status_code}: {response.text}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise BackendUnavailableError(f"Ollama returned invalid JSON from {path}") from exc

    def complete(
        self,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        model: Optional[str] = None,
    ) -> GeneratedResponse:
        """
        Generate a chat reply (non-streaming).

        Args:
            prompt: Current user message
            history: Prior ``{role, content}`` messages
            model: Override the default chat model

        Returns:
            GeneratedResponse with backend token counts

        Raises:
            BackendUnavailableError: If the request fails
        """
        start_time = time.time()
        model = model or self.model

        options = {"temperature": self.config.temperature}
        if self.config.max_new_tokens:
            options["num_predict"] = self.config.max_new_tokens

        payload = {
            "model": model,
            "messages": [*(history or []), {"role": "user", "content": prompt}],
            "stream": False,
            "options": options,
        }

        result = self._post("/api/chat", payload)
        message = result.get("message") or {}
        text = (message.get("content") or "").strip() or EMPTY_REPLY

        response = GeneratedResponse(
            text=text,
            prompt_tokens=int(result.get("prompt_eval_count") or 0),
            completion_tokens=int(result.get("eval_count") or 0),
            model_used=model,
            processing_time=time.time() - start_time,
        )
        logger.debug(
            "ollama_chat_completed",
            model=model,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
            seconds=round(response.processing_time, 3),
        )
        return response

    def embed(self, text: str, model: Optional[str] = None) -> List[float]:
        """
        Embed text with an Ollama embedding model.

        Returns:
            Embedding vector (empty if Ollama returned none)

        Raises:
            BackendUnavailableError: If the request fails
        """
        model = model or self.embed_model
        result = self._post("/api/embeddings", {"model": model, "prompt": text})
        embedding = result.get("embedding") or []
        return [float(x) for x in embedding]

    def get_available_models(self) -> List[str]:
        """
        Get list of available Ollama models.

        Returns:
            List of model names
        """
        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=5)
            if response.status_code == 200:
                data = response.json()
                return [model["name"] for model in data.get("models", [])]
            return []
        except (requests.exceptions.RequestException, ValueError, KeyError):
            return []

    def __repr__(self) -> str:
        return f"OllamaGenerator(model='{self.model}', base_url='{self.base_url}')"
