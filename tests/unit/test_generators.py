"""
Unit tests for model backends: the scripted mock and the Ollama adapter.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import requests

from chat_memory.errors import BackendUnavailableError
from chat_memory.generation import MockGenerator, OllamaGenerator, hash_embedding
from chat_memory.generation.generator import GenerationConfig
from chat_memory.generation.ollama_generator import EMPTY_REPLY


def _response(status=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload or {}
    response.text = text
    return response


# ============================================================================
# Mock Generator Tests
# ============================================================================

def test_mock_replays_script_then_default():
    generator = MockGenerator(responses=["first", "second"], default_response="fallback")

    texts = [generator.complete("q").text for _ in range(3)]

    assert texts == ["first", "second", "fallback"]
    assert [c["prompt"] for c in generator.calls] == ["q", "q", "q"]


def test_mock_raises_scripted_exceptions():
    generator = MockGenerator(responses=[BackendUnavailableError("down"), "ok"])

    with pytest.raises(BackendUnavailableError):
        generator.complete("q")
    assert generator.complete("q").text == "ok"


def test_mock_token_counts():
    response = MockGenerator(responses=["abcdefgh"]).complete("abcd", history=[{"role": "user", "content": "abcd"}])
    assert response.prompt_tokens == 2
    assert response.completion_tokens == 2


def test_hash_embedding_deterministic_unit_length():
    a = hash_embedding("User likes tea")
    assert a == hash_embedding("User likes tea")
    assert a != hash_embedding("User likes coffee")
    assert np.linalg.norm(a) == pytest.approx(1.0)
    assert len(a) == 64


def test_mock_embedding_overrides():
    generator = MockGenerator(embeddings={"x": [1.0, 2.0]})
    assert generator.embed("x") == [1.0, 2.0]
    assert len(generator.embed("y")) == 64
    assert generator.embed_calls == ["x", "y"]


# ============================================================================
# Ollama Generator Tests
# ============================================================================

@pytest.fixture
def ollama():
    return OllamaGenerator(
        model="gemma:2b",
        embed_model="nomic-embed-text",
        base_url="http://ollama.test:11434/",
        timeout=5,
        config=GenerationConfig(temperature=0.2, max_new_tokens=64),
    )


def test_chat_request_and_response(ollama):
    payload = {"message": {"role": "assistant", "content": " Hi! "}, "prompt_eval_count": 12, "eval_count": 3}
    history = [{"role": "system", "content": "be brief"}]

    with patch("chat_memory.generation.ollama_generator.requests.post", return_value=_response(payload=payload)) as post:
        response = ollama.complete("hello", history=history)

    url = post.call_args.args[0]
    body = post.call_args.kwargs["json"]
    assert url == "http://ollama.test:11434/api/chat"
    assert body["model"] == "gemma:2b"
    assert body["stream"] is False
    assert body["messages"] == [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hello"}]
    assert body["options"] == {"temperature": 0.2, "num_predict": 64}
    assert post.call_args.kwargs["timeout"] == 5

    assert response.text == "Hi!"
    assert response.prompt_tokens == 12
    assert response.completion_tokens == 3
    assert response.model_used == "gemma:2b"


def test_chat_model_override(ollama):
    payload = {"message": {"content": "ok"}}
    with patch("chat_memory.generation.ollama_generator.requests.post", return_value=_response(payload=payload)) as post:
        response = ollama.complete("hello", model="llama3")

    assert post.call_args.kwargs["json"]["model"] == "llama3"
    assert response.model_used == "llama3"
    assert response.prompt_tokens == 0


def test_empty_reply_falls_back(ollama):
    with patch("chat_memory.generation.ollama_generator.requests.post",
               return_value=_response(payload={"message": {"content": ""}})):
        assert ollama.complete("hello").text == EMPTY_REPLY


@pytest.mark.parametrize(
    "side_effect",
    [requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")],
)
def test_transport_errors_are_backend_unavailable(ollama, side_effect):
    with patch("chat_memory.generation.ollama_generator.requests.post", side_effect=side_effect):
        with pytest.raises(BackendUnavailableError) as exc_info:
            ollama.complete("hello")
    assert exc_info.value.retryable


def test_http_error_is_backend_unavailable(ollama):
    with patch("chat_memory.generation.ollama_generator.requests.post",
               return_value=_response(status=404, text="model not found")):
        with pytest.raises(BackendUnavailableError, match="404"):
            ollama.complete("hello")


def test_invalid_json_is_backend_unavailable(ollama):
    bad = _response()
    bad.json.side_effect = ValueError("not json")
    with patch("chat_memory.generation.ollama_generator.requests.post", return_value=bad):
        with pytest.raises(BackendUnavailableError):
            ollama.embed("hello")


def test_embed_request(ollama):
    with patch("chat_memory.generation.ollama_generator.requests.post",
               return_value=_response(payload={"embedding": [0.1, 0.2]})) as post:
        vector = ollama.embed("User likes tea")

    assert post.call_args.args[0] == "http://ollama.test:11434/api/embeddings"
    assert post.call_args.kwargs["json"] == {"model": "nomic-embed-text", "prompt": "User likes tea"}
    assert vector == [0.1, 0.2]


def test_embed_missing_vector_is_empty(ollama):
    with patch("chat_memory.generation.ollama_generator.requests.post", return_value=_response(payload={})):
        assert ollama.embed("x") == []


def test_availability_and_models(ollama):
    tags = _response(payload={"models": [{"name": "gemma:2b"}, {"name": "nomic-embed-text"}]})
    with patch("chat_memory.generation.ollama_generator.requests.get", return_value=tags):
        assert ollama.is_available()
        assert ollama.get_available_models() == ["gemma:2b", "nomic-embed-text"]

    with patch("chat_memory.generation.ollama_generator.requests.get",
               side_effect=requests.exceptions.ConnectionError("refused")):
        assert not ollama.is_available()
        assert ollama.get_available_models() == []


def test_check_on_init_fails_fast():
    with patch("chat_memory.generation.ollama_generator.requests.get",
               side_effect=requests.exceptions.ConnectionError("refused")):
        with pytest.raises(BackendUnavailableError):
            OllamaGenerator(check_on_init=True)
