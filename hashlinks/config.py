"""
HashLinks configuration - all environment variables in one place.

Read from environment at import time. Components take explicit arguments
and fall back to these values.
"""

from __future__ import annotations

import logging
import os


class Settings:
    """Registry and resolution settings from environment variables."""

    # Network
    NETWORK: str = os.environ.get("HASHLINKS_NETWORK", "testnet")
    MIRROR_NODE_URL: str = os.environ.get("MIRROR_NODE_URL", "https://testnet.mirrornode.hedera.com")
    CONTENT_CDN_URL: str = os.environ.get("CONTENT_CDN_URL", "https://kiloscribe.com/api/inscription-cdn")
    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "30"))

    # Database (PostgresTransport)
    DATABASE_URL: str = os.environ.get("DATABASE_URL", "")

    # Sync
    SYNC_PAGE_SIZE: int = int(os.environ.get("SYNC_PAGE_SIZE", "100"))
    SYNC_MAX_PAGES: int = int(os.environ.get("SYNC_MAX_PAGES", "50"))

    # Resolution fan-out
    RESOLVE_CONCURRENCY: int = int(os.environ.get("RESOLVE_CONCURRENCY", "8"))

    # Registry topic memo defaults
    REGISTRY_TTL: int = 60

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")


# Singleton instance
settings = Settings()

if settings.SYNC_PAGE_SIZE < 1:
    raise RuntimeError("SYNC_PAGE_SIZE must be a positive integer")
if settings.RESOLVE_CONCURRENCY < 1:
    raise RuntimeError("RESOLVE_CONCURRENCY must be a positive integer")


def configure_logging(level: str | None = None) -> None:
    """Apply LOG_LEVEL to the hashlinks logger hierarchy."""
    logging.getLogger("hashlinks").setLevel((level or settings.LOG_LEVEL).upper())
