"""s3_kb_sync/lambda_function.py

Lambda that mirrors an S3 bucket into a knowledge-base dataset.

Trigger:
    S3 event notifications (ObjectCreated:* and ObjectRemoved:*) on the
    configured bucket. Other event kinds in a batch are ignored.

Behavior:
    ObjectCreated:*   download the object, then update the document of the
                      same name or create it when absent.
    ObjectRemoved:*   delete the document of the same name, if any.

    The dataset is named after the bucket and is created on first use.
    Pre-flight failures (API unreachable, dataset lookup, document listing)
    return 500. Per-event failures are logged and do not change the status.

Environment variables:
    OBJECT_STORE_BUCKET            required (legacy: AWS_S3_BUCKET)
    DOCUMENT_API_BASE_URL          required (legacy: DIFY_API_BASE_URL)
    DOCUMENT_API_KEY               required (legacy: DIFY_API_KNOWLEDGE_KEY)
    OBJECT_STORE_REGION            default: AWS_REGION, then us-east-1
    DOCUMENT_API_TIMEOUT_SECONDS   default: 60
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from kbsync_shared.aws_clients import S3ObjectSource
from kbsync_shared.config import ConfigError, SyncConfig
from kbsync_shared.document_store import DocumentStoreClient
from kbsync_shared.http_utils import _response
from kbsync_shared.models import parse_change_events
from kbsync_shared.reconcile import run_sync

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _build_collaborators(config: SyncConfig):
    store = DocumentStoreClient(config)
    objects = S3ObjectSource(region=config.region)
    return store, objects


def lambda_handler(event: Dict[str, Any], context: Any):
    logger.info("Starting S3 sync process")
    try:
        config = SyncConfig.from_env()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return _response(500, f"Error during sync: {exc}")
    logger.info("Configuration: %s", config.redacted())

    events = parse_change_events(event)
    logger.info("Received %d change events", len(events))
    for change in events:
        if change.bucket and change.bucket != config.bucket:
            logger.warning(
                "Event for bucket %s differs from configured bucket %s; using configured bucket",
                change.bucket,
                config.bucket,
            )

    try:
        store, objects = _build_collaborators(config)
    except Exception as exc:
        logger.error("Failed to initialize clients: %s", exc)
        return _response(500, f"Error during sync: {exc}")
    result = run_sync(events, config, store=store, objects=objects)
    return _response(result.status_code, result.message)
