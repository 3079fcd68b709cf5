"""kbsync_shared.config — Sync configuration read from the environment.

Recognized environment variables:
    OBJECT_STORE_BUCKET            — bucket name; also the dataset name (required)
    DOCUMENT_API_BASE_URL          — knowledge-base API base URL (required)
    DOCUMENT_API_KEY               — bearer credential (required)
    OBJECT_STORE_REGION            — S3 region, falls back to AWS_REGION
    DOCUMENT_API_TIMEOUT_SECONDS   — HTTP timeout for document API calls

The legacy names AWS_S3_BUCKET, DIFY_API_BASE_URL and DIFY_API_KNOWLEDGE_KEY
are accepted when the primary names are unset.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

__all__ = [
    "ConfigError",
    "DATASET_PAGE_SIZE",
    "DEFAULT_REGION",
    "DEFAULT_TIMEOUT_SECONDS",
    "DOCUMENT_PAGE_SIZE",
    "INDEXING_OPTIONS",
    "PROBE_PAGE_SIZE",
    "SyncConfig",
]

DATASET_PAGE_SIZE = 20
DOCUMENT_PAGE_SIZE = 100
PROBE_PAGE_SIZE = 1
DEFAULT_REGION = "us-east-1"
DEFAULT_TIMEOUT_SECONDS = 60.0

# Sent as the `data` form field alongside every uploaded file.
INDEXING_OPTIONS = {
    "indexing_technique": "high_quality",
    "process_rule": {"mode": "automatic"},
}


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""


def _first_env(environ: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = (environ.get(name) or "").strip()
        if value:
            return value
    return ""


@dataclass(frozen=True)
class SyncConfig:
    bucket: str
    api_base_url: str
    api_key: str
    region: str = DEFAULT_REGION
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "api_base_url", self.api_base_url.rstrip("/"))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncConfig":
        """Build a config from ``environ`` (defaults to ``os.environ``).

        Raises:
            ConfigError: if a required variable is missing or the timeout is
                not a positive number.
        """
        env = os.environ if environ is None else environ

        bucket = _first_env(env, "OBJECT_STORE_BUCKET", "AWS_S3_BUCKET")
        base_url = _first_env(env, "DOCUMENT_API_BASE_URL", "DIFY_API_BASE_URL")
        api_key = _first_env(env, "DOCUMENT_API_KEY", "DIFY_API_KNOWLEDGE_KEY")

        missing = [
            name
            for name, value in (
                ("OBJECT_STORE_BUCKET", bucket),
                ("DOCUMENT_API_BASE_URL", base_url),
                ("DOCUMENT_API_KEY", api_key),
            )
            if not value
        ]
        if missing:
            raise ConfigError(f"Missing env vars: {', '.join(missing)}")

        raw_timeout = _first_env(env, "DOCUMENT_API_TIMEOUT_SECONDS")
        timeout = DEFAULT_TIMEOUT_SECONDS
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError as exc:
                raise ConfigError(
                    f"DOCUMENT_API_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}"
                ) from exc
            if timeout <= 0:
                raise ConfigError("DOCUMENT_API_TIMEOUT_SECONDS must be positive")

        return cls(
            bucket=bucket,
            api_base_url=base_url,
            api_key=api_key,
            region=_first_env(env, "OBJECT_STORE_REGION", "AWS_REGION") or DEFAULT_REGION,
            timeout_seconds=timeout,
        )

    def redacted(self) -> dict:
        """Loggable view of the config; the API key is never included."""
        return {
            "bucket": self.bucket,
            "api_base_url": self.api_base_url,
            "region": self.region,
            "timeout_seconds": self.timeout_seconds,
        }
