"""
Unified configuration for docconfidence
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()


# Environment-based configuration
class Environment(Enum):
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


def _get_env_value(*keys: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first non-empty environment variable value from the provided keys."""
    for key in keys:
        value = os.getenv(key)
        if value is not None:
            return value
    return default


def _env_int(*keys: str, default: int, min_value: Optional[int] = None) -> int:
    """Fetch an int from env with optional lower bound."""
    raw = _get_env_value(*keys)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    if min_value is not None and value < min_value:
        return min_value
    return value


def _env_float(
    *keys: str,
    default: float,
    min_value: Optional[float] = None,
    max_value: Optional[float] = None
) -> float:
    """Fetch a float from env with optional bounds."""
    raw = _get_env_value(*keys)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value
    return value


def _env_optional_float(*keys: str, min_value: float = 0.0) -> Optional[float]:
    """Fetch an optional positive float; unset or unparsable means None."""
    raw = _get_env_value(*keys)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value > min_value else None


def _env_bool(*keys: str, default: bool = False) -> bool:
    """Fetch a boolean flag from env."""
    raw = _get_env_value(*keys)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class UnifiedConfig:
    """
    Immutable settings for confidence scoring and field extraction, loaded from
    environment variables with per-environment defaults.
    """

    # Environment
    environment: Environment = Environment.DEVELOPMENT

    # Application
    app_name: str = "docconfidence"
    app_version: str = "1.0"
    debug: bool = True
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # LLM provider
    llm_provider: str = "openai"  # "openai", "groq_openai" or "llama_cpp"
    llm_model_name: str = "gpt-4o-mini"
    llm_base_url: Optional[str] = None
    openai_api_key: str = ""
    groq_api_key: str = ""
    llm_temperature: float = 0.0
    llm_top_p: float = 1.0
    llm_max_tokens: int = 512
    llm_timeout: int = 60

    # LLM Configuration (Llama.cpp backend)
    llm_model_path: str = "models/llm/mistral-7b-instruct-v0.2.Q4_K_M.gguf"
    llm_n_ctx: int = 4096
    llm_n_threads: int = 4
    llm_n_gpu_layers: int = 0

    # Confidence scoring
    enable_confidence_score: bool = False
    confidence_strategy: str = "entropy_based"
    top_logprobs: int = 5
    entropy_position_decay: float = 0.1
    weighted_max_entropy: float = 3.0
    max_expected_stddev: float = 0.3
    log_prob_floor: float = -10.0

    # Field extraction
    max_field_workers: int = 10
    shutdown_grace_period: int = 60
    extraction_timeout: Optional[float] = None
    pdf_render_dpi: int = 300

    @classmethod
    def from_environment(cls) -> 'UnifiedConfig':
        """Load configuration from environment variables"""

        env_name = _get_env_value(
            'DOCCONF_ENV', 'ENVIRONMENT', default='development'
        ).lower()
        try:
            environment = Environment(env_name)
        except ValueError:
            environment = Environment.DEVELOPMENT

        if environment == Environment.PRODUCTION:
            return cls._production_config()
        elif environment == Environment.TESTING:
            return cls._testing_config()
        else:
            return cls._development_config()

    @classmethod
    def _shared_settings(cls) -> Dict[str, Any]:
        """Settings every environment reads the same way."""
        return dict(
            llm_provider=_get_env_value('LLM_PROVIDER', default=cls.llm_provider).strip().lower(),
            llm_model_name=_get_env_value('LLM_MODEL_NAME', 'LLM_MODEL', default=cls.llm_model_name),
            llm_base_url=_get_env_value('LLM_BASE_URL') or None,
            openai_api_key=_get_env_value('OPENAI_API_KEY', default=''),
            groq_api_key=_get_env_value('GROQ_API_KEY', default=''),
            llm_temperature=_env_float('LLM_TEMPERATURE', default=cls.llm_temperature, min_value=0.0, max_value=2.0),
            llm_top_p=_env_float('LLM_TOP_P', default=cls.llm_top_p, min_value=0.0, max_value=1.0),
            llm_max_tokens=_env_int('LLM_MAX_TOKENS', default=cls.llm_max_tokens, min_value=1),
            llm_model_path=_get_env_value('LLM_MODEL_PATH', default=cls.llm_model_path),
            llm_n_ctx=_env_int('LLM_N_CTX', default=cls.llm_n_ctx, min_value=256),
            llm_n_threads=_env_int('LLM_N_THREADS', default=cls.llm_n_threads, min_value=1),
            llm_n_gpu_layers=_env_int('LLM_GPU_LAYERS', default=cls.llm_n_gpu_layers),
            enable_confidence_score=_env_bool('ENABLE_CONFIDENCE_SCORE', default=cls.enable_confidence_score),
            confidence_strategy=_get_env_value('CONFIDENCE_STRATEGY', default=cls.confidence_strategy).strip().lower(),
            top_logprobs=_env_int('TOP_LOGPROBS', default=cls.top_logprobs, min_value=0),
            entropy_position_decay=_env_float('ENTROPY_POSITION_DECAY', default=cls.entropy_position_decay, min_value=0.0),
            weighted_max_entropy=_env_float('WEIGHTED_MAX_ENTROPY', default=cls.weighted_max_entropy, min_value=1e-6),
            max_expected_stddev=_env_float('MAX_EXPECTED_STDDEV', default=cls.max_expected_stddev, min_value=1e-6),
            log_prob_floor=_env_float('LOG_PROB_FLOOR', default=cls.log_prob_floor, max_value=0.0),
            max_field_workers=_env_int('MAX_FIELD_WORKERS', default=cls.max_field_workers, min_value=1),
            pdf_render_dpi=_env_int('PDF_RENDER_DPI', default=cls.pdf_render_dpi, min_value=36),
            extraction_timeout=_env_optional_float('EXTRACTION_TIMEOUT'),
        )

    @classmethod
    def _development_config(cls) -> 'UnifiedConfig':
        """Development environment configuration"""
        return cls(
            environment=Environment.DEVELOPMENT,
            debug=True,
            log_level=_get_env_value('LOG_LEVEL', default='DEBUG'),
            log_file=_get_env_value('LOG_FILE'),
            llm_timeout=_env_int('LLM_TIMEOUT', default=120, min_value=1),
            shutdown_grace_period=_env_int('SHUTDOWN_GRACE_PERIOD', default=60, min_value=0),
            **cls._shared_settings(),
        )

    @classmethod
    def _testing_config(cls) -> 'UnifiedConfig':
        """Testing environment configuration"""
        settings = cls._shared_settings()
        settings.update(
            llm_provider="openai",
            llm_model_name="gpt-4o-mini",
            openai_api_key="test-key",
            enable_confidence_score=False,
            confidence_strategy="entropy_based",
        )
        return cls(
            environment=Environment.TESTING,
            debug=False,
            log_level="WARNING",
            llm_timeout=5,
            shutdown_grace_period=5,
            **settings,
        )

    @classmethod
    def _production_config(cls) -> 'UnifiedConfig':
        """Production environment configuration"""
        return cls(
            environment=Environment.PRODUCTION,
            debug=False,
            log_level=_get_env_value('LOG_LEVEL', default='INFO'),
            log_file=_get_env_value('LOG_FILE'),
            llm_timeout=_env_int('LLM_TIMEOUT', default=60, min_value=5),
            shutdown_grace_period=_env_int('SHUTDOWN_GRACE_PERIOD', default=60, min_value=1),
            **cls._shared_settings(),
        )

    # Utility methods
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    def get_llm_config(self) -> Dict[str, Any]:
        """Get all LLM-related configuration."""
        return {
            # Common
            'provider': self.llm_provider,
            'model_name': self.llm_model_name,
            'base_url': self.llm_base_url,
            'temperature': self.llm_temperature,
            'top_p': self.llm_top_p,
            'max_tokens': self.llm_max_tokens,
            'timeout': self.llm_timeout,
            'top_logprobs': self.top_logprobs,
            'verbose': False,

            # Llama.cpp specific
            'model_path': self.llm_model_path,
            'n_ctx': self.llm_n_ctx,
            'n_threads': self.llm_n_threads,
            'n_gpu_layers': self.llm_n_gpu_layers,
        }

    def get_calibration_config(self) -> Dict[str, float]:
        """Tunable constants used by the confidence strategies."""
        return {
            'position_decay': self.entropy_position_decay,
            'weighted_max_entropy': self.weighted_max_entropy,
            'max_expected_stddev': self.max_expected_stddev,
            'log_prob_floor': self.log_prob_floor,
        }

    def get_extraction_config(self) -> Dict[str, Any]:
        return {
            'max_field_workers': self.max_field_workers,
            'shutdown_grace_period': self.shutdown_grace_period,
            'extraction_timeout': self.extraction_timeout,
            'pdf_render_dpi': self.pdf_render_dpi,
            'enable_confidence_score': self.enable_confidence_score,
            'confidence_strategy': self.confidence_strategy,
        }

    def get_api_key(self) -> str:
        """API key matching the configured provider."""
        if self.llm_provider in {"groq", "groq_openai"}:
            return self.groq_api_key
        return self.openai_api_key


# Global configuration instance
_config_instance: Optional[UnifiedConfig] = None


def get_config() -> UnifiedConfig:
    """Get the global configuration instance"""
    global _config_instance
    if _config_instance is None:
        _config_instance = UnifiedConfig.from_environment()
    return _config_instance


def reload_config() -> UnifiedConfig:
    """Reload configuration from environment"""
    global _config_instance
    _config_instance = UnifiedConfig.from_environment()
    return _config_instance


# Export the unified config as the main interface
__all__ = [
    'UnifiedConfig',
    'get_config',
    'reload_config',
    'Environment'
]
