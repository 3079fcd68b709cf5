"""test_reconcile.py — Reconciliation behavior against a mocked document store.

Covers dataset discovery/creation, full-pagination index loading, the
create/update/delete dispatch, per-event failure isolation and pre-flight
gating. No network or AWS access.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_reconcile.py -v
"""

from __future__ import annotations

import os
import sys
import unittest
from unittest.mock import MagicMock, call

from botocore.exceptions import ClientError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from kbsync_shared.config import INDEXING_OPTIONS, SyncConfig
from kbsync_shared.document_store import DocumentStoreError
from kbsync_shared.models import (
    ChangeEvent,
    ChangeEventKind,
    Dataset,
    DocumentIndex,
    DocumentRecord,
    Page,
)
from kbsync_shared.reconcile import (
    CONNECTIVITY_ERROR,
    SUCCESS_MESSAGE,
    load_document_index,
    probe,
    reconcile_events,
    resolve_or_create_dataset,
    run_sync,
)

CONFIG = SyncConfig(bucket="docs-bucket", api_base_url="https://kb.example.com/v1", api_key="k")


def _event(key: str, name: str = "ObjectCreated:Put") -> ChangeEvent:
    return ChangeEvent(encoded_key=key, event_name=name, kind=ChangeEventKind.classify(name))


def _dataset_page(names, has_more, start=0):
    return Page(
        items=tuple(Dataset(id=f"ds-{start + i}", name=n) for i, n in enumerate(names)),
        has_more=has_more,
    )


def _objects(content=b"bytes"):
    objects = MagicMock()
    objects.get_object.return_value = content
    return objects


class ProbeTests(unittest.TestCase):
    def test_probe_success_uses_page_size_one(self):
        store = MagicMock()
        self.assertTrue(probe(store))
        store.list_datasets.assert_called_once_with(page=1, limit=1)

    def test_probe_failure_returns_false(self):
        store = MagicMock()
        store.list_datasets.side_effect = ConnectionError("unreachable")
        self.assertFalse(probe(store))


class DatasetResolverTests(unittest.TestCase):
    def test_found_on_second_page(self):
        store = MagicMock()
        store.list_datasets.side_effect = [
            _dataset_page(["a", "b"], has_more=True),
            _dataset_page(["docs-bucket", "docs-bucket"], has_more=True, start=2),
        ]
        self.assertEqual(resolve_or_create_dataset(store, "docs-bucket"), "ds-2")
        self.assertEqual(store.list_datasets.call_count, 2)
        store.create_dataset.assert_not_called()

    def test_scans_all_pages_then_creates_once(self):
        pages = 3
        store = MagicMock()
        store.list_datasets.side_effect = [
            _dataset_page([f"other-{p}-{i}" for i in range(20)], has_more=p < pages - 1, start=p * 20)
            for p in range(pages)
        ]
        store.create_dataset.return_value = Dataset(id="new-ds", name="docs-bucket")

        self.assertEqual(resolve_or_create_dataset(store, "docs-bucket"), "new-ds")
        self.assertEqual(
            store.list_datasets.call_args_list,
            [call(page=p + 1, limit=20) for p in range(pages)],
        )
        store.create_dataset.assert_called_once_with("docs-bucket")

    def test_empty_store_creates(self):
        store = MagicMock()
        store.list_datasets.return_value = Page(items=(), has_more=False)
        store.create_dataset.return_value = Dataset(id="new-ds", name="docs-bucket")
        self.assertEqual(resolve_or_create_dataset(store, "docs-bucket"), "new-ds")
        store.list_datasets.assert_called_once_with(page=1, limit=20)

    def test_listing_failure_propagates(self):
        store = MagicMock()
        store.list_datasets.side_effect = DocumentStoreError("GET", "u", 401, {"code": "unauthorized"})
        with self.assertRaises(DocumentStoreError):
            resolve_or_create_dataset(store, "docs-bucket")
        store.create_dataset.assert_not_called()


class DocumentIndexLoaderTests(unittest.TestCase):
    def test_loads_every_page(self):
        store = MagicMock()
        store.list_documents.side_effect = [
            Page(items=(DocumentRecord("1", "a.txt"), DocumentRecord("2", "b.txt")), has_more=True),
            Page(items=(DocumentRecord("3", "a.txt"),), has_more=False),
        ]
        index = load_document_index(store, "ds1")
        self.assertEqual(
            store.list_documents.call_args_list,
            [call("ds1", page=1, limit=100), call("ds1", page=2, limit=100)],
        )
        self.assertEqual(set(index), {"a.txt", "b.txt"})
        self.assertEqual(index["a.txt"].id, "3")

    def test_page_failure_propagates(self):
        store = MagicMock()
        store.list_documents.side_effect = [
            Page(items=(DocumentRecord("1", "a.txt"),), has_more=True),
            DocumentStoreError("GET", "u", 500, None),
        ]
        with self.assertRaises(DocumentStoreError):
            load_document_index(store, "ds1")


class ReconcileEventsTests(unittest.TestCase):
    def _run(self, events, index, store=None, objects=None):
        store = store or MagicMock()
        objects = objects or _objects()
        report = reconcile_events(
            events, index, "ds1", store=store, objects=objects, bucket="docs-bucket"
        )
        return report, store, objects

    def test_create_when_absent(self):
        report, store, objects = self._run([_event("new+file%21.txt")], DocumentIndex())
        objects.get_object.assert_called_once_with("docs-bucket", "new file!.txt")
        store.create_document_by_file.assert_called_once_with(
            "ds1", "new file!.txt", b"bytes", INDEXING_OPTIONS
        )
        store.update_document_by_file.assert_not_called()
        self.assertEqual(report.outcomes[0].action, "created")

    def test_update_when_present(self):
        index = DocumentIndex([DocumentRecord("doc-7", "a b.txt")])
        report, store, _ = self._run([_event("a+b.txt", "ObjectCreated:CompleteMultipartUpload")], index)
        store.update_document_by_file.assert_called_once_with(
            "ds1", "doc-7", "a b.txt", b"bytes", INDEXING_OPTIONS
        )
        store.create_document_by_file.assert_not_called()
        self.assertEqual(report.outcomes[0].action, "updated")

    def test_repeated_create_becomes_update(self):
        store = MagicMock()
        self._run([_event("x.txt")], DocumentIndex(), store=store)
        self.assertEqual(store.create_document_by_file.call_count, 1)
        self.assertEqual(store.update_document_by_file.call_count, 0)

        second = MagicMock()
        self._run([_event("x.txt")], DocumentIndex([DocumentRecord("d1", "x.txt")]), store=second)
        self.assertEqual(second.create_document_by_file.call_count, 0)
        self.assertEqual(second.update_document_by_file.call_count, 1)

    def test_delete_when_present(self):
        index = DocumentIndex([DocumentRecord("doc-1", "gone.txt")])
        report, store, objects = self._run([_event("gone.txt", "ObjectRemoved:Delete")], index)
        store.delete_document.assert_called_once_with("ds1", "doc-1")
        objects.get_object.assert_not_called()
        self.assertEqual(report.outcomes[0].action, "deleted")

    def test_delete_unknown_name_makes_no_calls(self):
        report, store, objects = self._run(
            [_event("missing.txt", "ObjectRemoved:DeleteMarkerCreated")], DocumentIndex()
        )
        self.assertEqual(store.mock_calls, [])
        self.assertEqual(objects.mock_calls, [])
        self.assertTrue(report.outcomes[0].ok)
        self.assertEqual(report.outcomes[0].action, "skipped")

    def test_other_event_kinds_ignored(self):
        report, store, objects = self._run(
            [_event("a.txt", "ObjectRestore:Completed")],
            DocumentIndex([DocumentRecord("d1", "a.txt")]),
        )
        self.assertEqual(store.mock_calls, [])
        self.assertEqual(objects.mock_calls, [])
        self.assertEqual(report.outcomes[0].action, "ignored")

    def test_failure_isolated_to_one_event(self):
        store = MagicMock()
        store.create_document_by_file.side_effect = [
            {"document": {"id": "n1"}},
            DocumentStoreError("POST", "u", 400, {"code": "unsupported_file_type"}),
            {"document": {"id": "n3"}},
        ]
        events = [_event("one.txt"), _event("two.exe"), _event("three.txt")]
        report, store, objects = self._run(events, DocumentIndex(), store=store)

        self.assertEqual(store.create_document_by_file.call_count, 3)
        self.assertEqual(objects.get_object.call_count, 3)
        self.assertEqual([o.ok for o in report.outcomes], [True, False, True])
        self.assertEqual(report.outcomes[1].key, "two.exe")
        self.assertIn("unsupported_file_type", report.outcomes[1].reason)

    def test_object_fetch_failure_isolated(self):
        objects = MagicMock()
        objects.get_object.side_effect = [RuntimeError("NoSuchKey"), b"ok"]
        report, store, _ = self._run(
            [_event("vanished.txt"), _event("present.txt")], DocumentIndex(), objects=objects
        )
        store.create_document_by_file.assert_called_once_with(
            "ds1", "present.txt", b"ok", INDEXING_OPTIONS
        )
        self.assertFalse(report.outcomes[0].ok)
        self.assertEqual(report.outcomes[0].action, "upsert")

    def test_s3_client_error_isolated(self):
        objects = MagicMock()
        objects.get_object.side_effect = [
            ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject",
            ),
            b"ok",
        ]
        report, store, _ = self._run(
            [_event("a.txt"), _event("b.txt")], DocumentIndex(), objects=objects
        )
        self.assertEqual([o.ok for o in report.outcomes], [False, True])
        self.assertIn("NoSuchKey", report.outcomes[0].reason)
        store.create_document_by_file.assert_called_once_with(
            "ds1", "b.txt", b"ok", INDEXING_OPTIONS
        )

    def test_s3_access_denied_does_not_abort_run(self):
        store = MagicMock()
        store.list_datasets.return_value = _dataset_page(["docs-bucket"], has_more=False)
        store.list_documents.return_value = Page(items=(), has_more=False)
        objects = MagicMock()
        objects.get_object.side_effect = [
            ClientError({"Error": {"Code": "AccessDenied", "Message": "Access Denied"}}, "GetObject"),
            b"ok",
        ]

        result = run_sync([_event("a.txt"), _event("b.txt")], CONFIG, store=store, objects=objects)

        self.assertTrue(result.ok)
        self.assertEqual(result.report.failed, 1)
        self.assertEqual(store.create_document_by_file.call_count, 1)

    def test_snapshot_not_updated_within_batch(self):
        events = [_event("same.txt"), _event("same.txt", "ObjectRemoved:Delete")]
        report, store, _ = self._run(events, DocumentIndex())
        store.create_document_by_file.assert_called_once()
        store.delete_document.assert_not_called()
        self.assertEqual([o.action for o in report.outcomes], ["created", "skipped"])


class RunSyncTests(unittest.TestCase):
    def _store(self):
        store = MagicMock()
        store.list_datasets.return_value = _dataset_page(["docs-bucket"], has_more=False)
        store.list_documents.return_value = Page(
            items=(DocumentRecord("d1", "keep.txt"),), has_more=False
        )
        return store

    def test_success_with_event_failure(self):
        store = self._store()
        store.update_document_by_file.side_effect = DocumentStoreError("POST", "u", 500, None)
        events = [_event("new.txt"), _event("keep.txt"), _event("keep.txt", "ObjectRemoved:Delete")]

        result = run_sync(events, CONFIG, store=store, objects=_objects())

        self.assertTrue(result.ok)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.message, SUCCESS_MESSAGE)
        self.assertEqual(result.report.failed, 1)
        store.delete_document.assert_called_once_with("ds-0", "d1")

    def test_probe_failure_processes_nothing(self):
        store = MagicMock()
        store.list_datasets.side_effect = ConnectionError("down")
        objects = _objects()

        result = run_sync([_event("a.txt")], CONFIG, store=store, objects=objects)

        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 500)
        self.assertEqual(result.message, f"Error during sync: {CONNECTIVITY_ERROR}")
        self.assertEqual(result.report.outcomes, [])
        store.list_documents.assert_not_called()
        store.create_document_by_file.assert_not_called()
        objects.get_object.assert_not_called()

    def test_index_failure_is_fatal(self):
        store = self._store()
        store.list_documents.side_effect = DocumentStoreError("GET", "u", 403, {"code": "forbidden"})
        objects = _objects()

        result = run_sync([_event("a.txt")], CONFIG, store=store, objects=objects)

        self.assertFalse(result.ok)
        self.assertIn("403", result.message)
        objects.get_object.assert_not_called()
        store.create_document_by_file.assert_not_called()

    def test_preflight_runs_once_per_batch(self):
        store = self._store()
        events = [_event(f"f{i}.txt") for i in range(4)]
        run_sync(events, CONFIG, store=store, objects=_objects())
        # one probe call plus one resolver page
        self.assertEqual(store.list_datasets.call_count, 2)
        store.list_documents.assert_called_once_with("ds-0", page=1, limit=100)
        self.assertEqual(store.create_document_by_file.call_count, 4)


if __name__ == "__main__":
    unittest.main()
