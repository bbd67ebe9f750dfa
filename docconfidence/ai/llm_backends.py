"""Backend wrappers for OpenAI-compatible APIs and llama.cpp.

Backends answer prompts (optionally about a page image) and fetch the token
log-probabilities the confidence calculator consumes.
"""

from __future__ import annotations

import base64
import re
from typing import Any, Dict, List, Mapping, Optional

from openai import OpenAI

from docconfidence.ai.types import (
    ModelReply,
    TokenAlternative,
    TokenProbability,
    TokenProbabilitySet,
    TokenUsage,
)
from docconfidence.exceptions import ConfigurationError, ModelInvocationError
from docconfidence.logging_config import get_logger

_BACKEND_ALIASES = {
    "groq": "groq_openai",
    "groqai_openai": "groq_openai",
    "llama.cpp": "llama_cpp",
    "llama-cpp": "llama_cpp",
}

OPENAI_BASE_URL = "https://api.openai.com/v1"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"
USER_AGENT = "docconfidence/1.0"


def normalize_backend_name(name: str) -> str:
    return _BACKEND_ALIASES.get(name, name)


logger = get_logger(__name__)

try:
    from llama_cpp import Llama
    LLAMA_CPP_AVAILABLE = True
except ImportError:  # pragma: no cover
    LLAMA_CPP_AVAILABLE = False
    Llama = None


_REASONING_MODEL_PATTERN = re.compile(r"^o([0-9]|-)")


def uses_max_completion_tokens(model: Optional[str]) -> bool:
    """Reasoning models take ``max_completion_tokens`` and reject temperature/top_p."""
    if not model:
        return False
    lowered = model.lower()
    if _REASONING_MODEL_PATTERN.match(lowered):
        return True
    return "reasoning" in lowered or lowered.startswith("gpt-5")


def _as_dict(payload: Any) -> Dict[str, Any]:
    """Accept raw dicts as well as SDK response objects."""
    if payload is None:
        return {}
    if isinstance(payload, Mapping):
        return dict(payload)
    if hasattr(payload, "model_dump"):
        return payload.model_dump()
    if hasattr(payload, "to_dict"):
        return payload.to_dict()
    raise TypeError(f"Unsupported response payload type: {type(payload).__name__}")


def parse_openai_logprobs(response: Any) -> TokenProbabilitySet:
    """Chat-completion response -> TokenProbabilitySet (empty when logprobs are absent)."""
    data = _as_dict(response)
    choices = data.get("choices") or []
    if not choices:
        return TokenProbabilitySet()

    choice = choices[0] or {}
    logprobs = choice.get("logprobs") or {}
    content = logprobs.get("content")
    if not content:
        return TokenProbabilitySet()

    tokens: List[TokenProbability] = []
    for entry in content:
        if entry.get("logprob") is None:
            continue
        alternatives = tuple(
            TokenAlternative(token=alt.get("token", ""), logprob=alt["logprob"], token_bytes=alt.get("bytes"))
            for alt in (entry.get("top_logprobs") or [])
            if alt.get("logprob") is not None
        )
        tokens.append(
            TokenProbability(
                token=entry.get("token", ""),
                logprob=entry["logprob"],
                alternatives=alternatives,
                token_bytes=entry.get("bytes"),
            )
        )

    metadata: Dict[str, Any] = {
        "model": data.get("model"),
        "created": data.get("created"),
        "finish_reason": choice.get("finish_reason"),
    }
    usage = data.get("usage")
    if usage:
        metadata["prompt_tokens"] = usage.get("prompt_tokens")
        metadata["completion_tokens"] = usage.get("completion_tokens")
        metadata["total_tokens"] = usage.get("total_tokens")
    return TokenProbabilitySet(tokens=tuple(tokens), metadata=metadata)


def parse_llama_cpp_logprobs(response: Mapping[str, Any]) -> TokenProbabilitySet:
    """llama.cpp completion response -> TokenProbabilitySet."""
    choices = response.get("choices") or []
    if not choices:
        return TokenProbabilitySet()
    choice = choices[0]
    logprobs = choice.get("logprobs") or {}
    texts = logprobs.get("tokens") or []
    values = logprobs.get("token_logprobs") or []
    top = logprobs.get("top_logprobs") or []

    tokens: List[TokenProbability] = []
    for idx, (text, value) in enumerate(zip(texts, values)):
        if value is None:
            continue
        candidates = top[idx] if idx < len(top) and top[idx] else {}
        alternatives = tuple(
            TokenAlternative(token=alt_token, logprob=alt_logprob)
            for alt_token, alt_logprob in candidates.items()
            if alt_logprob is not None
        )
        tokens.append(TokenProbability(token=text, logprob=value, alternatives=alternatives))

    usage = response.get("usage") or {}
    metadata = {
        "model": response.get("model"),
        "created": response.get("created"),
        "finish_reason": choice.get("finish_reason"),
        "prompt_tokens": usage.get("prompt_tokens"),
        "completion_tokens": usage.get("completion_tokens"),
        "total_tokens": usage.get("total_tokens"),
    }
    return TokenProbabilitySet(tokens=tuple(tokens), metadata=metadata)


def encode_image(image: bytes) -> str:
    return base64.b64encode(image).decode("ascii")


class LLMBackendBase:
    """Synchronous text generation backend."""

    name = "base"

    def __init__(self, config):
        self.config = config

    def generate(self, prompt: str, *, image: Optional[bytes] = None) -> ModelReply:
        raise NotImplementedError

    def fetch_logprobs(self, prompt: str) -> TokenProbabilitySet:
        raise NotImplementedError


class OpenAIBackend(LLMBackendBase):
    """OpenAI chat completions (also Groq through its OpenAI-compatible endpoint)."""

    name = "openai"

    def __init__(self, config, client: Optional[OpenAI] = None, base_url: Optional[str] = None):
        super().__init__(config)
        llm_config = config.get_llm_config()
        self.model_name = llm_config["model_name"]
        self.top_logprobs = llm_config["top_logprobs"]
        self.generation_params = {
            "max_tokens": llm_config["max_tokens"],
            "temperature": llm_config["temperature"],
            "top_p": llm_config["top_p"],
        }
        if client is None:
            api_key = config.get_api_key()
            if not api_key:
                raise ConfigurationError("No API key configured for the OpenAI backend.", config_key="OPENAI_API_KEY")
            client = OpenAI(
                api_key=api_key,
                base_url=base_url or llm_config["base_url"] or OPENAI_BASE_URL,
                timeout=llm_config["timeout"],
                default_headers={"User-Agent": USER_AGENT},
            )
        self._client = client
        logger.info("Initialized OpenAI-compatible backend for model %s", self.model_name)

    def _request_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"model": self.model_name}
        if uses_max_completion_tokens(self.model_name):
            params["max_completion_tokens"] = self.generation_params["max_tokens"]
            logger.debug("Using max_completion_tokens for reasoning model %s", self.model_name)
        else:
            params.update(self.generation_params)
        return params

    def _messages(self, prompt: str, image: Optional[bytes]) -> List[Dict[str, Any]]:
        if image is None:
            return [{"role": "user", "content": prompt}]
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encode_image(image)}"}},
                ],
            }
        ]

    def generate(self, prompt: str, *, image: Optional[bytes] = None) -> ModelReply:
        try:
            response = self._client.chat.completions.create(messages=self._messages(prompt, image), **self._request_params())
        except Exception as exc:
            raise ModelInvocationError(str(exc), model_name=self.model_name, operation="generate") from exc
        data = _as_dict(response)
        choices = data.get("choices") or []
        text = ((choices[0].get("message") or {}).get("content") or "") if choices else ""
        usage = data.get("usage") or {}
        return ModelReply(
            text=text,
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
                total_tokens=usage.get("total_tokens") or 0,
            ),
        )

    def fetch_logprobs(self, prompt: str) -> TokenProbabilitySet:
        params = self._request_params()
        params.update(logprobs=True, top_logprobs=self.top_logprobs)
        try:
            response = self._client.chat.completions.create(messages=self._messages(prompt, None), **params)
        except Exception as exc:
            raise ModelInvocationError(str(exc), model_name=self.model_name, operation="fetch_logprobs") from exc
        return parse_openai_logprobs(response)


class LlamaCppBackend(LLMBackendBase):
    """llama-cpp-python backend."""

    name = "llama_cpp"

    def __init__(self, config):
        super().__init__(config)
        if not LLAMA_CPP_AVAILABLE:
            raise RuntimeError("llama-cpp-python is not installed.")
        llm_config = config.get_llm_config()
        params = {
            "model_path": llm_config["model_path"],
            "n_ctx": llm_config["n_ctx"],
            "n_threads": llm_config["n_threads"],
            "n_gpu_layers": llm_config["n_gpu_layers"],
            "logits_all": True,  # required for per-token logprobs
            "verbose": llm_config["verbose"],
        }
        self.model_name = llm_config["model_path"]
        self.top_logprobs = llm_config["top_logprobs"]
        self.generation_params = {
            "max_tokens": llm_config["max_tokens"],
            "temperature": llm_config["temperature"],
            "top_p": llm_config["top_p"],
        }
        self._model = Llama(**params)
        logger.info("Loaded llama.cpp backend with model %s", params["model_path"])

    def generate(self, prompt: str, *, image: Optional[bytes] = None) -> ModelReply:
        if image is not None:
            raise ModelInvocationError(
                "llama.cpp backend does not accept page images.", model_name=self.model_name, operation="generate"
            )
        response = self._model(prompt, **self.generation_params)
        usage = response.get("usage") or {}
        return ModelReply(
            text=response["choices"][0]["text"],
            usage=TokenUsage(
                input_tokens=usage.get("prompt_tokens") or 0,
                output_tokens=usage.get("completion_tokens") or 0,
                total_tokens=usage.get("total_tokens") or 0,
            ),
        )

    def fetch_logprobs(self, prompt: str) -> TokenProbabilitySet:
        response = self._model(prompt, logprobs=max(1, self.top_logprobs), **self.generation_params)
        return parse_llama_cpp_logprobs(response)


def resolve_base_url(config) -> str:
    """Explicit override first, then the provider's public endpoint."""
    if config.llm_base_url:
        return config.llm_base_url
    if normalize_backend_name(config.llm_provider.lower()) == "groq_openai":
        return GROQ_BASE_URL
    return OPENAI_BASE_URL


def build_backend(config, backend_name: Optional[str] = None) -> LLMBackendBase:
    backend = normalize_backend_name((backend_name or config.llm_provider).lower())
    if backend in ("openai", "groq_openai"):
        return OpenAIBackend(config, base_url=resolve_base_url(config))
    if backend == "llama_cpp":
        return LlamaCppBackend(config)
    raise ConfigurationError(f"Unsupported backend '{backend}'", config_key="LLM_PROVIDER", value=backend)


__all__ = [
    "GROQ_BASE_URL",
    "LLMBackendBase",
    "LlamaCppBackend",
    "OPENAI_BASE_URL",
    "OpenAIBackend",
    "build_backend",
    "encode_image",
    "normalize_backend_name",
    "parse_llama_cpp_logprobs",
    "parse_openai_logprobs",
    "resolve_base_url",
    "uses_max_completion_tokens",
]
