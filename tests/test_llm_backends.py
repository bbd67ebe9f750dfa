import dataclasses
from unittest.mock import Mock

import pytest

from docconfidence.ai import llm_backends
from docconfidence.ai.llm_backends import (
    GROQ_BASE_URL,
    OPENAI_BASE_URL,
    OpenAIBackend,
    build_backend,
    normalize_backend_name,
    parse_llama_cpp_logprobs,
    parse_openai_logprobs,
    resolve_base_url,
    uses_max_completion_tokens,
)
from docconfidence.exceptions import ConfigurationError, ModelInvocationError


def _completion(content="INV-42", with_logprobs=True):
    choice = {
        "index": 0,
        "message": {"role": "assistant", "content": content},
        "finish_reason": "stop",
    }
    if with_logprobs:
        choice["logprobs"] = {
            "content": [
                {
                    "token": "INV",
                    "logprob": -0.01,
                    "bytes": [73, 78, 86],
                    "top_logprobs": [
                        {"token": "INV", "logprob": -0.01, "bytes": [73, 78, 86]},
                        {"token": "Inv", "logprob": -4.8, "bytes": None},
                    ],
                },
                {"token": "-42", "logprob": -0.3, "bytes": None, "top_logprobs": []},
            ]
        }
    return {
        "id": "chatcmpl-1",
        "model": "gpt-4o-mini-2024-07-18",
        "created": 1700000000,
        "choices": [choice],
        "usage": {"prompt_tokens": 50, "completion_tokens": 2, "total_tokens": 52},
    }


def test_normalize_backend_name():
    assert normalize_backend_name("llama.cpp") == "llama_cpp"
    assert normalize_backend_name("llama-cpp") == "llama_cpp"
    assert normalize_backend_name("llama_cpp") == "llama_cpp"
    assert normalize_backend_name("groq") == "groq_openai"
    assert normalize_backend_name("openai") == "openai"


@pytest.mark.parametrize(
    "model, expected",
    [
        ("o1", True),
        ("o1-mini", True),
        ("o3-pro", True),
        ("o-preview", True),
        ("my-reasoning-model", True),
        ("gpt-5-nano", True),
        ("gpt-4o", False),
        ("gpt-4o-mini", False),
        ("omni-large", False),
        (None, False),
    ],
)
def test_uses_max_completion_tokens(model, expected):
    assert uses_max_completion_tokens(model) is expected


def test_parse_openai_logprobs():
    token_set = parse_openai_logprobs(_completion())
    assert token_set.token_count() == 2
    first = token_set.tokens[0]
    assert first.token == "INV"
    assert first.token_bytes == b"INV"
    assert first.alternative_count == 2
    assert token_set.tokens[1].alternatives == ()
    assert token_set.metadata["model"] == "gpt-4o-mini-2024-07-18"
    assert token_set.metadata["finish_reason"] == "stop"
    assert token_set.metadata["total_tokens"] == 52


def test_parse_openai_logprobs_missing():
    assert parse_openai_logprobs(_completion(with_logprobs=False)).is_empty()
    assert parse_openai_logprobs({"choices": []}).is_empty()


def test_parse_openai_logprobs_from_sdk_object():
    response = Mock()
    response.model_dump.return_value = _completion()
    assert parse_openai_logprobs(response).token_count() == 2


def test_parse_llama_cpp_logprobs():
    response = {
        "model": "local.gguf",
        "choices": [
            {
                "text": "42",
                "finish_reason": "stop",
                "logprobs": {
                    "tokens": ["4", "2"],
                    "token_logprobs": [-0.2, None],
                    "top_logprobs": [{"4": -0.2, "5": -2.0}, None],
                },
            }
        ],
        "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7},
    }
    token_set = parse_llama_cpp_logprobs(response)
    assert token_set.token_count() == 1
    assert token_set.tokens[0].alternative_count == 2
    assert token_set.metadata["completion_tokens"] == 2


class TestOpenAIBackend:
    def _backend(self, config, **overrides):
        client = Mock()
        client.chat.completions.create.return_value = _completion()
        return OpenAIBackend(dataclasses.replace(config, **overrides), client=client), client

    def test_generate_text(self, test_config):
        backend, client = self._backend(test_config)
        reply = backend.generate("What is the invoice number?")
        assert reply.text == "INV-42"
        assert reply.usage.total_tokens == 52
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "What is the invoice number?"}]
        assert kwargs["temperature"] == test_config.llm_temperature
        assert "logprobs" not in kwargs

    def test_generate_with_image(self, test_config):
        backend, client = self._backend(test_config)
        backend.generate("Read this", image=b"\x89PNG")
        content = client.chat.completions.create.call_args.kwargs["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "Read this"}
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw=="

    def test_fetch_logprobs(self, test_config):
        backend, client = self._backend(test_config, top_logprobs=3)
        token_set = backend.fetch_logprobs("prompt")
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["logprobs"] is True
        assert kwargs["top_logprobs"] == 3
        assert token_set.token_count() == 2

    def test_reasoning_model_params(self, test_config):
        backend, client = self._backend(test_config, llm_model_name="o1-mini")
        backend.generate("hi")
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["max_completion_tokens"] == test_config.llm_max_tokens
        assert "temperature" not in kwargs
        assert "top_p" not in kwargs
        assert "max_tokens" not in kwargs

    def test_client_error_wrapped(self, test_config):
        backend, client = self._backend(test_config)
        client.chat.completions.create.side_effect = RuntimeError("rate limited")
        with pytest.raises(ModelInvocationError) as excinfo:
            backend.fetch_logprobs("prompt")
        assert excinfo.value.details["operation"] == "fetch_logprobs"

    def test_missing_api_key(self, test_config):
        with pytest.raises(ConfigurationError):
            OpenAIBackend(dataclasses.replace(test_config, openai_api_key=""))


class TestBuildBackend:
    def test_openai_base_url(self, test_config, monkeypatch):
        fake_openai = Mock()
        monkeypatch.setattr(llm_backends, "OpenAI", fake_openai)
        backend = build_backend(test_config)
        assert isinstance(backend, OpenAIBackend)
        assert fake_openai.call_args.kwargs["base_url"] == OPENAI_BASE_URL
        assert fake_openai.call_args.kwargs["api_key"] == "test-key"

    def test_groq_base_url(self, test_config, monkeypatch):
        fake_openai = Mock()
        monkeypatch.setattr(llm_backends, "OpenAI", fake_openai)
        config = dataclasses.replace(test_config, llm_provider="groq", groq_api_key="gsk-test")
        build_backend(config)
        assert fake_openai.call_args.kwargs["base_url"] == GROQ_BASE_URL
        assert fake_openai.call_args.kwargs["api_key"] == "gsk-test"

    def test_resolve_base_url_override(self, test_config):
        config = dataclasses.replace(test_config, llm_base_url="http://localhost:8080/v1")
        assert resolve_base_url(config) == "http://localhost:8080/v1"

    def test_unknown_backend(self, test_config):
        with pytest.raises(ConfigurationError):
            build_backend(test_config, "vertex")

    def test_llama_cpp_requires_package(self, test_config, monkeypatch):
        monkeypatch.setattr(llm_backends, "LLAMA_CPP_AVAILABLE", False)
        with pytest.raises(RuntimeError):
            build_backend(test_config, "llama.cpp")
