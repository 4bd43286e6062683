"""
Configuration management for the knowledge distiller.
Settings are read from the environment once and passed explicitly to every component.
"""

import os
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from util.logging import logger

from .schema import CATEGORIES, NOISE, RunConfig


DEFAULT_AGENTS = ["trader", "fullstack", "assistant", "scrum"]

DEFAULT_CATEGORIES = [c for c in CATEGORIES if c != NOISE]

DEFAULT_MIN_SCORE = 60
DEFAULT_MAX_PER_AGENT = 100

VECTOR_PROVIDERS = ("qdrant", "memory")
LLM_PROVIDERS = ("openai", "ollama")
DISTANCES = ("Cosine", "Euclid", "Dot", "Manhattan")

VERSION = "1.0.0"


class ConfigurationError(ValueError):
    """Raised for invalid settings or run configuration, before any processing."""
    pass


def _env_bool(env: Dict[str, str], name: str, default: str) -> bool:
    return env.get(name, default).lower() == "true"


def _env_int(env: Dict[str, str], name: str, default: str) -> int:
    raw = env.get(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(env: Dict[str, str], name: str, default: str) -> float:
    raw = env.get(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class DistillerSettings:
    """Process-wide settings. Build once with from_env() and thread through."""

    # Store
    vector_provider: str = "qdrant"  # qdrant|memory
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_api_key: Optional[str] = None
    source_collection: str = "mrc_bot_memory"
    golden_collection: str = "agent_golden_knowledge"
    snapshot_dir: str = "./snapshots"
    scroll_page_size: int = 256
    upsert_batch_size: int = 128
    default_vector_size: int = 1024
    default_vector_distance: str = "Cosine"

    # LLM scoring
    llm_scoring_enabled: bool = False
    llm_provider: str = "openai"  # openai|ollama
    llm_base_url: str = "http://localhost:8317/v1"
    llm_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_batch_size: int = 10
    llm_batch_delay_sec: float = 0.5
    llm_timeout_sec: float = 60.0

    debug: bool = False

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None, load_env_file: bool = True) -> "DistillerSettings":
        """Build settings from environment variables (and a local .env file)."""
        if env is None:
            if load_env_file:
                load_dotenv()
            env = dict(os.environ)

        return cls(
            vector_provider=env.get("VECTOR_PROVIDER", "qdrant").lower(),
            qdrant_host=env.get("QDRANT_HOST", "localhost"),
            qdrant_port=_env_int(env, "QDRANT_PORT", "6333"),
            qdrant_api_key=env.get("QDRANT_API_KEY") or None,
            source_collection=env.get("QDRANT_COLLECTION", "mrc_bot_memory"),
            golden_collection=env.get("GOLDEN_COLLECTION", "agent_golden_knowledge"),
            snapshot_dir=env.get("SNAPSHOT_DIR", "./snapshots"),
            scroll_page_size=_env_int(env, "SCROLL_PAGE_SIZE", "256"),
            upsert_batch_size=_env_int(env, "UPSERT_BATCH_SIZE", "128"),
            default_vector_size=_env_int(env, "DEFAULT_VECTOR_SIZE", "1024"),
            default_vector_distance=env.get("DEFAULT_VECTOR_DISTANCE", "Cosine"),
            llm_scoring_enabled=_env_bool(env, "LLM_SCORING_ENABLED", "false"),
            llm_provider=env.get("LLM_PROVIDER", "openai").lower(),
            llm_base_url=env.get("LLM_BASE_URL", "http://localhost:8317/v1").rstrip("/"),
            llm_api_key=env.get("LLM_API_KEY", ""),
            llm_model=env.get("LLM_MODEL", "gpt-4o-mini"),
            llm_batch_size=max(1, _env_int(env, "LLM_BATCH_SIZE", "10")),
            llm_batch_delay_sec=_env_float(env, "LLM_BATCH_DELAY_SEC", "0.5"),
            llm_timeout_sec=_env_float(env, "LLM_TIMEOUT_SEC", "60"),
            debug=_env_bool(env, "DEBUG", "false"),
        )

    def with_llm_scoring(self, enabled: bool) -> "DistillerSettings":
        """Copy of these settings with LLM scoring switched on or off."""
        return replace(self, llm_scoring_enabled=enabled)

    def require_valid(self) -> "DistillerSettings":
        """Raise ConfigurationError listing every issue, or return self."""
        issues = validate_settings(self)
        if issues:
            logger.log_config_issues(issues)
            raise ConfigurationError(f"Invalid configuration: {'; '.join(issues)}")
        return self


def validate_settings(settings: DistillerSettings) -> List[str]:
    """Validate settings and return any issues."""
    issues = []

    if settings.vector_provider not in VECTOR_PROVIDERS:
        issues.append(f"Invalid VECTOR_PROVIDER: {settings.vector_provider}")

    if settings.llm_provider not in LLM_PROVIDERS:
        issues.append(f"Invalid LLM_PROVIDER: {settings.llm_provider}")

    if settings.default_vector_distance not in DISTANCES:
        issues.append(f"Invalid DEFAULT_VECTOR_DISTANCE: {settings.default_vector_distance}")

    if not settings.source_collection:
        issues.append("QDRANT_COLLECTION cannot be empty")

    if not settings.golden_collection:
        issues.append("GOLDEN_COLLECTION cannot be empty")

    if settings.source_collection and settings.source_collection == settings.golden_collection:
        issues.append("GOLDEN_COLLECTION must differ from QDRANT_COLLECTION")

    if settings.scroll_page_size < 1:
        issues.append("SCROLL_PAGE_SIZE must be >= 1")

    if settings.upsert_batch_size < 1:
        issues.append("UPSERT_BATCH_SIZE must be >= 1")

    if settings.default_vector_size < 1:
        issues.append("DEFAULT_VECTOR_SIZE must be >= 1")

    if settings.llm_batch_delay_sec < 0:
        issues.append("LLM_BATCH_DELAY_SEC must be >= 0")

    if settings.llm_timeout_sec <= 0:
        issues.append("LLM_TIMEOUT_SEC must be > 0")

    return issues


def build_run_config(agents: Optional[List[str]] = None,
                     min_score: Optional[int] = None,
                     max_per_agent: Optional[int] = None,
                     categories: Optional[List[str]] = None,
                     dry_run: bool = False,
                     create_snapshot: bool = False,
                     force_rule_only: bool = False) -> RunConfig:
    """Fill run defaults and validate. Raises ConfigurationError on bad input."""
    try:
        return RunConfig(
            agents=agents if agents else list(DEFAULT_AGENTS),
            min_quality_score=DEFAULT_MIN_SCORE if min_score is None else min_score,
            max_output_per_agent=DEFAULT_MAX_PER_AGENT if max_per_agent is None else max_per_agent,
            categories=list(categories) if categories is not None else list(DEFAULT_CATEGORIES),
            dry_run=bool(dry_run),
            create_snapshot=bool(create_snapshot),
            force_rule_only=bool(force_rule_only),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid run configuration: {e}") from e


def get_memory_store(settings: DistillerSettings):
    """Get configured memory store implementation."""
    if settings.vector_provider == "memory":
        from distiller.vector.index import InMemoryMemoryStore
        return InMemoryMemoryStore(
            source_collection=settings.source_collection,
            golden_collection=settings.golden_collection,
            snapshot_dir=settings.snapshot_dir,
            upsert_batch_size=settings.upsert_batch_size,
        )
    elif settings.vector_provider == "qdrant":
        from distiller.vector.qdrant_store import QdrantMemoryStore
        return QdrantMemoryStore.from_settings(settings)
    else:
        raise ConfigurationError(f"Invalid VECTOR_PROVIDER: {settings.vector_provider}")


def get_llm_transport(settings: DistillerSettings):
    """Get configured LLM transport. Returns None if LLM scoring is disabled."""
    if not settings.llm_scoring_enabled:
        return None

    if settings.llm_provider == "openai":
        from distiller.scoring.transports import OpenAICompatibleTransport
        return OpenAICompatibleTransport(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout_sec,
        )
    elif settings.llm_provider == "ollama":
        from distiller.scoring.transports import OllamaTransport
        return OllamaTransport(
            host=settings.llm_base_url,
            model=settings.llm_model,
            timeout=settings.llm_timeout_sec,
        )
    else:
        raise ConfigurationError(f"Invalid LLM_PROVIDER: {settings.llm_provider}")
