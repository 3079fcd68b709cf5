"""kbsync_shared.reconcile — Map S3 change events onto document store calls.

A sync run has two phases:

    Pre-flight   probe -> resolve_or_create_dataset -> load_document_index
                 Any failure aborts the run before an event is touched.
    Events       reconcile_events, sequential and in batch order. Each event
                 yields an EventOutcome; exceptions never cross the event
                 boundary.

All events of one batch are resolved against the same index snapshot taken
during pre-flight. A create and a later delete of the same name in one batch
do not see each other.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable, List, Protocol

from kbsync_shared.config import (
    DATASET_PAGE_SIZE,
    DOCUMENT_PAGE_SIZE,
    INDEXING_OPTIONS,
    PROBE_PAGE_SIZE,
    SyncConfig,
)
from kbsync_shared.http_utils import _error_detail
from kbsync_shared.key_codec import decode_key
from kbsync_shared.models import (
    ChangeEvent,
    ChangeEventKind,
    DocumentIndex,
    DocumentRecord,
    EventOutcome,
    SyncReport,
    SyncResult,
)
from kbsync_shared.serialization import _dumps, _emit_structured_observability

logger = logging.getLogger(__name__)

__all__ = [
    "CONNECTIVITY_ERROR",
    "SUCCESS_MESSAGE",
    "SyncAbortedError",
    "load_document_index",
    "probe",
    "process_created",
    "process_removed",
    "reconcile_events",
    "resolve_or_create_dataset",
    "run_sync",
]

SUCCESS_MESSAGE = "Sync completed successfully!"
CONNECTIVITY_ERROR = (
    "Unable to connect to the document API. "
    "Please check network connectivity and API configuration."
)


class SyncAbortedError(RuntimeError):
    """A pre-flight step failed; no events were processed."""


class ObjectSource(Protocol):
    def get_object(self, bucket: str, key: str) -> bytes: ...


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------


def probe(store: Any) -> bool:
    """Minimal read against the document API; True on any success."""
    try:
        store.list_datasets(page=1, limit=PROBE_PAGE_SIZE)
    except Exception as exc:
        logger.error("API connectivity test failed: %s", exc)
        return False
    logger.info("API connectivity test successful")
    return True


def resolve_or_create_dataset(store: Any, name: str) -> str:
    """Return the id of the dataset called ``name``, creating it if absent.

    Pages are scanned in order and the first match wins. Scanning stops at
    the first page that reports ``has_more`` false.
    """
    page_no = 1
    while True:
        page = store.list_datasets(page=page_no, limit=DATASET_PAGE_SIZE)
        for dataset in page.items:
            if dataset.name == name:
                logger.info("Found existing dataset: %s", dataset.id)
                return dataset.id
        if not page.has_more:
            break
        page_no += 1

    logger.info("Dataset %s not found, creating new one", name)
    created = store.create_dataset(name)
    logger.info("Created new dataset: %s", created.id)
    return created.id


def load_document_index(store: Any, dataset_id: str) -> DocumentIndex:
    records: List[DocumentRecord] = []
    page_no = 1
    has_more = True
    while has_more:
        page = store.list_documents(dataset_id, page=page_no, limit=DOCUMENT_PAGE_SIZE)
        records.extend(page.items)
        has_more = page.has_more
        page_no += 1
    index = DocumentIndex(records)
    logger.info("Found %d existing documents in dataset %s", len(records), dataset_id)
    return index


# ---------------------------------------------------------------------------
# Per-event handlers
# ---------------------------------------------------------------------------


def process_created(
    name: str,
    index: DocumentIndex,
    dataset_id: str,
    *,
    store: Any,
    objects: ObjectSource,
    bucket: str,
) -> EventOutcome:
    content = objects.get_object(bucket, name)
    existing = index.get(name)
    if existing is not None:
        logger.info("Updating existing document %s for %s", existing.id, name)
        store.update_document_by_file(dataset_id, existing.id, name, content, INDEXING_OPTIONS)
        return EventOutcome(key=name, action="updated", document_id=existing.id)

    logger.info("Creating new document for %s", name)
    store.create_document_by_file(dataset_id, name, content, INDEXING_OPTIONS)
    return EventOutcome(key=name, action="created")


def process_removed(
    name: str,
    index: DocumentIndex,
    dataset_id: str,
    *,
    store: Any,
) -> EventOutcome:
    existing = index.get(name)
    if existing is None:
        logger.info("Document for %s not found, no deletion needed", name)
        return EventOutcome(key=name, action="skipped")
    logger.info("Deleting document %s for %s", existing.id, name)
    store.delete_document(dataset_id, existing.id)
    return EventOutcome(key=name, action="deleted", document_id=existing.id)


def _reconcile_one(
    event: ChangeEvent,
    index: DocumentIndex,
    dataset_id: str,
    *,
    store: Any,
    objects: ObjectSource,
    bucket: str,
) -> EventOutcome:
    if event.kind is ChangeEventKind.OTHER:
        logger.info("Ignoring event %s for %s", event.event_name, event.encoded_key)
        return EventOutcome(key=event.encoded_key, action="ignored")

    attempted = "upsert" if event.kind is ChangeEventKind.CREATED else "delete"
    name = event.encoded_key
    try:
        name = decode_key(event.encoded_key)
        logger.info(
            "Processing object: %s Event: %s (encoded key: %s)",
            name,
            event.event_name,
            event.encoded_key,
        )
        if event.kind is ChangeEventKind.CREATED:
            return process_created(
                name, index, dataset_id, store=store, objects=objects, bucket=bucket
            )
        return process_removed(name, index, dataset_id, store=store)
    except Exception as exc:
        logger.error("Error processing object %s: %s", name, exc)
        _log_error_detail(exc)
        return EventOutcome(key=name, action=attempted, ok=False, reason=str(exc))


def _log_error_detail(exc: BaseException) -> None:
    try:
        detail = _error_detail(exc)
        if detail is not None:
            logger.error("Error response: %s", _dumps(detail))
    except Exception:
        logger.exception("Could not render error detail for %s", type(exc).__name__)


def reconcile_events(
    events: Iterable[ChangeEvent],
    index: DocumentIndex,
    dataset_id: str,
    *,
    store: Any,
    objects: ObjectSource,
    bucket: str,
) -> SyncReport:
    report = SyncReport()
    for event in events:
        started = time.monotonic()
        outcome = _reconcile_one(
            event, index, dataset_id, store=store, objects=objects, bucket=bucket
        )
        report.add(outcome)
        _emit_structured_observability(
            component="s3_kb_sync",
            event="event_reconciled" if outcome.ok else "event_failed",
            object_key=outcome.key,
            action=outcome.action,
            latency_ms=int((time.monotonic() - started) * 1000),
            error_code="" if outcome.ok else f"{outcome.action}_failed",
            extra={"event_name": event.event_name, "document_id": outcome.document_id or ""},
        )
    return report


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def run_sync(
    events: Iterable[ChangeEvent],
    config: SyncConfig,
    *,
    store: Any,
    objects: ObjectSource,
) -> SyncResult:
    """Run pre-flight then reconcile ``events``.

    The result is a failure only when a pre-flight step fails; per-event
    failures are reported in ``SyncResult.report`` and the logs.
    """
    logger.info("Starting S3 sync for bucket %s", config.bucket)
    try:
        if not probe(store):
            raise SyncAbortedError(CONNECTIVITY_ERROR)
        dataset_id = resolve_or_create_dataset(store, config.bucket)
        index = load_document_index(store, dataset_id)
    except Exception as exc:
        logger.error("Error during sync: %s", exc)
        _log_error_detail(exc)
        return SyncResult(ok=False, message=f"Error during sync: {exc}")

    report = reconcile_events(
        events, index, dataset_id, store=store, objects=objects, bucket=config.bucket
    )
    logger.info(
        "Sync completed: %d succeeded, %d failed %s",
        report.succeeded,
        report.failed,
        report.counts(),
    )
    return SyncResult(ok=True, message=SUCCESS_MESSAGE, report=report)
