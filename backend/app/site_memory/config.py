"""
Site Memory configuration

Settings are plain dataclasses. ``SiteMemoryConfig.from_env()`` loads the
backend ``.env`` file first, then reads ``SITE_MEMORY_*`` variables.
"""

import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# backend/.env (site_memory -> app -> backend)
DEFAULT_ENV_PATH = pathlib.Path(__file__).parent.parent.parent / '.env'

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


@dataclass
class PatternStoreConfig:
    """Limits for one pattern store"""
    storage_key: str
    max_patterns_per_domain: int = 100
    max_prompt_patterns: int = 30
    min_hits_for_prompt: int = 2
    persist_debounce_ms: int = 5000


@dataclass
class KnowledgeConfig:
    """Limits for the knowledge store"""
    max_items_per_domain: int = 50
    default_expiry_days: int = 60
    max_items_in_prompt: int = 15


def default_api_config() -> PatternStoreConfig:
    return PatternStoreConfig(
        storage_key="api_observer",
        max_patterns_per_domain=100,
        max_prompt_patterns=30,
        min_hits_for_prompt=2,
    )


def default_interaction_config() -> PatternStoreConfig:
    return PatternStoreConfig(
        storage_key="interaction_observer",
        max_patterns_per_domain=200,
        max_prompt_patterns=40,
        min_hits_for_prompt=1,
    )


@dataclass
class SiteMemoryConfig:
    """Top-level configuration for the site memory service"""
    data_dir: str = "data/site_memory"
    log_level: str = "INFO"
    api_patterns: PatternStoreConfig = field(default_factory=default_api_config)
    interaction_patterns: PatternStoreConfig = field(default_factory=default_interaction_config)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))

    @classmethod
    def from_env(cls, env_path: Optional[pathlib.Path] = None) -> "SiteMemoryConfig":
        """Build configuration from the environment (and the .env file, if any)"""
        load_dotenv(env_path or DEFAULT_ENV_PATH)

        config = cls()
        config.data_dir = os.getenv("SITE_MEMORY_DATA_DIR", config.data_dir)
        config.log_level = os.getenv("SITE_MEMORY_LOG_LEVEL", config.log_level).upper()

        debounce = _int_env("SITE_MEMORY_PERSIST_DEBOUNCE_MS", 5000)
        config.api_patterns.persist_debounce_ms = debounce
        config.interaction_patterns.persist_debounce_ms = debounce

        config.api_patterns.max_patterns_per_domain = _int_env(
            "SITE_MEMORY_API_MAX_PATTERNS", config.api_patterns.max_patterns_per_domain
        )
        config.interaction_patterns.max_patterns_per_domain = _int_env(
            "SITE_MEMORY_DOM_MAX_PATTERNS", config.interaction_patterns.max_patterns_per_domain
        )

        # Comma-separated, e.g. CORS_ORIGINS=https://app.example.com,https://admin.example.com
        cors_origins_env = os.getenv("CORS_ORIGINS", "")
        if cors_origins_env:
            config.cors_origins = [origin.strip() for origin in cors_origins_env.split(",") if origin.strip()]

        return config


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer, using {default}")
        return default
    if value < 1:
        logger.warning(f"Ignoring {name}={raw!r}: must be positive, using {default}")
        return default
    return value
