"""kbsync_shared.aws_clients — S3 client factory and object source.

Clients are built from an explicit region per sync run instead of living in
module-level singletons.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import boto3
from botocore.config import Config

from kbsync_shared.config import DEFAULT_REGION

logger = logging.getLogger(__name__)

__all__ = ["S3ObjectSource", "_s3_client"]


def _s3_client(region: Optional[str] = None):
    """Create an S3 client with standard retries."""
    return boto3.client(
        "s3",
        region_name=region or DEFAULT_REGION,
        config=Config(retries={"max_attempts": 3, "mode": "standard"}),
    )


class S3ObjectSource:
    """Fetches raw object bytes by bucket and key."""

    def __init__(self, client: Any = None, *, region: Optional[str] = None) -> None:
        self._client = client if client is not None else _s3_client(region)

    def get_object(self, bucket: str, key: str) -> bytes:
        """Download ``key`` from ``bucket``.

        ``ClientError`` / ``BotoCoreError`` propagate to the caller.
        """
        logger.info("Downloading s3://%s/%s", bucket, key)
        resp = self._client.get_object(Bucket=bucket, Key=key)
        body = resp["Body"]
        try:
            return body.read()
        finally:
            close = getattr(body, "close", None)
            if close is not None:
                close()
