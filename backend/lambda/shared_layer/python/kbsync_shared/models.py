"""kbsync_shared.models — Typed records for change events and store payloads.

S3 notification records and document API payloads arrive as loose JSON. They
are parsed here into small frozen dataclasses so the reconciler never reaches
into raw dicts.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, TypeVar

logger = logging.getLogger(__name__)

__all__ = [
    "ChangeEvent",
    "ChangeEventKind",
    "Dataset",
    "DocumentIndex",
    "DocumentRecord",
    "EventOutcome",
    "Page",
    "SyncReport",
    "SyncResult",
    "parse_change_events",
]

T = TypeVar("T")


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


class ChangeEventKind(enum.Enum):
    CREATED = "created"
    REMOVED = "removed"
    OTHER = "other"

    @classmethod
    def classify(cls, event_name: str) -> "ChangeEventKind":
        if event_name.startswith("ObjectCreated"):
            return cls.CREATED
        if event_name.startswith("ObjectRemoved"):
            return cls.REMOVED
        return cls.OTHER


@dataclass(frozen=True)
class ChangeEvent:
    encoded_key: str
    event_name: str
    kind: ChangeEventKind
    bucket: str = ""

    @classmethod
    def from_record(cls, record: Any) -> "ChangeEvent":
        """Parse one S3 notification record.

        Missing fields default to empty strings, which classify as OTHER.
        """
        if not isinstance(record, Mapping):
            raise ValueError(f"Unsupported record type: {type(record).__name__}")
        s3 = _mapping(record.get("s3"))
        obj = _mapping(s3.get("object"))
        bucket = _mapping(s3.get("bucket"))
        event_name = str(record.get("eventName") or "")
        return cls(
            encoded_key=str(obj.get("key") or ""),
            event_name=event_name,
            kind=ChangeEventKind.classify(event_name),
            bucket=str(bucket.get("name") or ""),
        )


def parse_change_events(payload: Any) -> List[ChangeEvent]:
    """Parse the ``Records`` array of an S3 notification batch, in order."""
    records = (payload or {}).get("Records") if isinstance(payload, Mapping) else None
    if not isinstance(records, list):
        return []
    events: List[ChangeEvent] = []
    for position, record in enumerate(records):
        try:
            events.append(ChangeEvent.from_record(record))
        except ValueError as exc:
            logger.warning("Skipping record %d: %s", position, exc)
    return events


def _require_id(payload: Any, what: str) -> str:
    if not isinstance(payload, Mapping):
        raise ValueError(f"Unexpected {what} payload: {payload!r}")
    raw_id = payload.get("id")
    if not isinstance(raw_id, str) or not raw_id:
        raise ValueError(f"{what} payload has no id: {payload!r}")
    return raw_id


@dataclass(frozen=True)
class Dataset:
    id: str
    name: str

    @classmethod
    def from_payload(cls, payload: Any) -> "Dataset":
        return cls(id=_require_id(payload, "dataset"), name=str(payload.get("name") or ""))


@dataclass(frozen=True)
class DocumentRecord:
    id: str
    name: str

    @classmethod
    def from_payload(cls, payload: Any) -> "DocumentRecord":
        return cls(id=_require_id(payload, "document"), name=str(payload.get("name") or ""))


@dataclass(frozen=True)
class Page:
    """One page of a ``{"data": [...], "has_more": bool}`` listing."""

    items: tuple
    has_more: bool

    @classmethod
    def from_payload(cls, payload: Any, item_type: Callable[[Any], T]) -> "Page":
        if not isinstance(payload, Mapping):
            raise ValueError(f"Unexpected listing payload: {payload!r}")
        data = payload.get("data") or []
        if not isinstance(data, list):
            raise ValueError(f"Listing 'data' is not a list: {data!r}")
        return cls(
            items=tuple(item_type(item) for item in data),
            has_more=payload.get("has_more") is True,
        )


class DocumentIndex(Mapping[str, DocumentRecord]):
    """Read-only name -> document lookup built once per invocation.

    When the listing holds several documents with the same name, the last one
    listed wins.
    """

    def __init__(self, records: Iterable[DocumentRecord] = ()) -> None:
        by_name: Dict[str, DocumentRecord] = {}
        for record in records:
            by_name[record.name] = record
        self._by_name = MappingProxyType(by_name)

    def __getitem__(self, name: str) -> DocumentRecord:
        return self._by_name[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_name)

    def __len__(self) -> int:
        return len(self._by_name)

    def __repr__(self) -> str:
        return f"DocumentIndex({len(self)} documents)"


@dataclass(frozen=True)
class EventOutcome:
    key: str
    action: str
    ok: bool = True
    reason: str = ""
    document_id: Optional[str] = None


@dataclass
class SyncReport:
    outcomes: List[EventOutcome] = field(default_factory=list)

    def add(self, outcome: EventOutcome) -> None:
        self.outcomes.append(outcome)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    def counts(self) -> Dict[str, int]:
        out: Dict[str, int] = {}
        for outcome in self.outcomes:
            label = outcome.action if outcome.ok else "failed"
            out[label] = out.get(label, 0) + 1
        return out


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    message: str
    report: SyncReport = field(default_factory=SyncReport)

    @property
    def status_code(self) -> int:
        return 200 if self.ok else 500
