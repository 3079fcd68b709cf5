"""kbsync_shared.document_store — Knowledge-base dataset/document API client.

Thin synchronous wrapper over the dataset API:

    GET    /datasets?page=&limit=
    POST   /datasets
    GET    /datasets/{dataset_id}/documents?page=&limit=
    POST   /datasets/{dataset_id}/document/create_by_file
    POST   /datasets/{dataset_id}/documents/{document_id}/update_by_file
    DELETE /datasets/{dataset_id}/documents/{document_id}

Every call carries the bearer credential from ``SyncConfig``. Non-2xx
responses raise ``DocumentStoreError``; transport failures surface as
``requests.RequestException``. Nothing is retried here.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from kbsync_shared.config import INDEXING_OPTIONS, SyncConfig
from kbsync_shared.models import Dataset, DocumentRecord, Page
from kbsync_shared.serialization import _dumps

logger = logging.getLogger(__name__)

__all__ = ["DocumentStoreClient", "DocumentStoreError"]


class DocumentStoreError(RuntimeError):
    def __init__(self, method: str, url: str, status_code: int, detail: Any):
        super().__init__(f"{method} {url} failed ({status_code}): {detail}")
        self.method = method
        self.url = url
        self.status_code = status_code
        self.detail = detail


def _body(resp: requests.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return resp.text


class DocumentStoreClient:
    def __init__(self, config: SyncConfig, session: Optional[requests.Session] = None) -> None:
        self.base_url = config.api_base_url
        self.timeout = config.timeout_seconds
        self.session = session if session is not None else requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {config.api_key}",
                "User-Agent": "kbsync/1.0",
            }
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self.base_url}{path}"
        resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        if not 200 <= resp.status_code < 300:
            raise DocumentStoreError(method, url, resp.status_code, _body(resp))
        return _body(resp)

    # -- datasets ----------------------------------------------------------

    def list_datasets(self, page: int, limit: int) -> Page:
        payload = self._request("GET", "/datasets", params={"page": page, "limit": limit})
        return Page.from_payload(payload, Dataset.from_payload)

    def create_dataset(self, name: str) -> Dataset:
        payload = self._request("POST", "/datasets", json={"name": name})
        if isinstance(payload, Mapping) and "name" not in payload:
            payload = {**payload, "name": name}
        return Dataset.from_payload(payload)

    # -- documents ---------------------------------------------------------

    def list_documents(self, dataset_id: str, page: int, limit: int) -> Page:
        payload = self._request(
            "GET",
            f"/datasets/{dataset_id}/documents",
            params={"page": page, "limit": limit},
        )
        return Page.from_payload(payload, DocumentRecord.from_payload)

    def _upload(
        self,
        path: str,
        filename: str,
        content: bytes,
        options: Optional[Dict[str, Any]],
    ) -> Any:
        data_json = json.dumps(options if options is not None else INDEXING_OPTIONS)
        logger.info("Uploading %s (%d bytes) with data %s", filename, len(content), data_json)
        payload = self._request(
            "POST",
            path,
            files={"file": (filename, content)},
            data={"data": data_json},
        )
        logger.info("Upload response for %s: %s", filename, _dumps(payload))
        return payload

    def create_document_by_file(
        self,
        dataset_id: str,
        filename: str,
        content: bytes,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return self._upload(
            f"/datasets/{dataset_id}/document/create_by_file", filename, content, options
        )

    def update_document_by_file(
        self,
        dataset_id: str,
        document_id: str,
        filename: str,
        content: bytes,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return self._upload(
            f"/datasets/{dataset_id}/documents/{document_id}/update_by_file",
            filename,
            content,
            options,
        )

    def delete_document(self, dataset_id: str, document_id: str) -> Any:
        payload = self._request("DELETE", f"/datasets/{dataset_id}/documents/{document_id}")
        logger.info("Delete response for %s: %s", document_id, _dumps(payload))
        return payload
