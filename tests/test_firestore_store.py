"""Tests for the Firestore-backed document store.

Most tests drive ``FirestoreDocumentStore`` against a small fake of the
async client surface it uses. ``TestAgainstEmulator`` runs the same
contract against a real Firestore emulator when ``FIRESTORE_EMULATOR_HOST``
is set.
"""

import copy
import os
import uuid
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as gexc
from google.cloud import firestore

from studio_booking.errors import NotFound, StoreUnavailable
from studio_booking.services import firestore_store
from studio_booking.services.booking import BookingOrchestrator
from studio_booking.services.engineers import EngineerDirectory
from studio_booking.services.firestore_store import FirestoreDocumentStore, _apply_if_revision
from studio_booking.services.store import BOOKINGS, FieldFilter, schedule_collection
from tests.conftest import SESSION_DATE, make_context, make_engineer, make_request


def _matches(field_filter, data) -> bool:
    field, op, value = field_filter.field_path, field_filter.op_string, field_filter.value
    if op == "==":
        return data.get(field) == value
    return field in data and data[field] != value


class FakeSnapshot:
    def __init__(self, doc_id, data):
        self.id = doc_id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, client, collection, doc_id):
        self._client = client
        self._collection = collection
        self.id = doc_id

    @property
    def path(self):
        return f"{self._collection}/{self.id}"

    async def get(self, transaction=None):
        self._client.enter("get")
        return FakeSnapshot(self.id, self._client.docs.get(self._collection, {}).get(self.id))

    async def set(self, data):
        self._client.enter("set")
        self._client.docs.setdefault(self._collection, {})[self.id] = copy.deepcopy(data)

    async def delete(self, option=None):
        self._client.enter("delete")
        docs = self._client.docs.get(self._collection, {})
        if self.id not in docs:
            if option is not None and option.exists:
                raise gexc.NotFound(f"No document to update: {self.path}")
            return
        del docs[self.id]


class FakeQuery:
    def __init__(self, client, collection, filters=()):
        self._client = client
        self._collection = collection
        self.filters = filters

    def where(self, filter=None):
        return FakeQuery(self._client, self._collection, self.filters + (filter,))

    async def stream(self):
        self._client.enter("query")
        self._client.last_query = self
        for doc_id, data in list(self._client.docs.get(self._collection, {}).items()):
            if all(_matches(f, data) for f in self.filters):
                yield FakeSnapshot(doc_id, data)


class FakeCollection(FakeQuery):
    def document(self, doc_id):
        return FakeDocument(self._client, self._collection, doc_id)

    async def add(self, data):
        ref = self.document(uuid.uuid4().hex[:20])
        await ref.set(data)
        return None, ref


class FakeTransaction:
    def __init__(self, client):
        self._client = client
        self.writes = []

    def set(self, ref, data):
        self.writes.append((ref.path, data))
        self._client.docs.setdefault(ref._collection, {})[ref.id] = copy.deepcopy(data)


class FakeAsyncClient:
    """The slice of ``firestore.AsyncClient`` the store touches."""

    def __init__(self):
        self.docs = {}
        self.last_query = None
        self._faults = {}

    def fail(self, operation, error):
        self._faults[operation] = error

    def enter(self, operation):
        if operation in self._faults:
            raise self._faults.pop(operation)

    def collection(self, path):
        return FakeCollection(self, path)

    def transaction(self):
        return FakeTransaction(self)

    @staticmethod
    def write_option(**kwargs):
        return SimpleNamespace(**kwargs)


@pytest.fixture
def client():
    return FakeAsyncClient()


@pytest.fixture
def fs_store(client, monkeypatch):
    # The fake transaction has no begin/commit, so run the body directly
    monkeypatch.setattr(firestore_store, "_write_if_revision", _apply_if_revision)
    return FirestoreDocumentStore(client)


class TestDocumentOperations:
    @pytest.mark.asyncio
    async def test_get_missing_is_none(self, fs_store):
        assert await fs_store.get(BOOKINGS, "nope") is None

    @pytest.mark.asyncio
    async def test_add_then_get(self, fs_store):
        doc_id = await fs_store.add(BOOKINGS, {"status": "pending"})
        assert await fs_store.get(BOOKINGS, doc_id) == {"status": "pending"}

    @pytest.mark.asyncio
    async def test_set_overwrites(self, fs_store):
        await fs_store.set("engineers", "eng-1", {"name": "Sam"})
        await fs_store.set("engineers", "eng-1", {"name": "Alex"})
        assert await fs_store.get("engineers", "eng-1") == {"name": "Alex"}

    @pytest.mark.asyncio
    async def test_nested_collection_path(self, fs_store, client):
        await fs_store.set(schedule_collection("eng-1"), "2025-03-17", {"bookings": []})
        assert "engineers/eng-1/schedule" in client.docs

    @pytest.mark.asyncio
    async def test_delete(self, fs_store):
        doc_id = await fs_store.add(BOOKINGS, {"status": "pending"})
        await fs_store.delete(BOOKINGS, doc_id)
        assert await fs_store.get(BOOKINGS, doc_id) is None

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self, fs_store):
        with pytest.raises(NotFound, match="bookings/nope"):
            await fs_store.delete(BOOKINGS, "nope")


class TestQuery:
    @pytest.mark.asyncio
    async def test_filters_become_where_clauses(self, fs_store, client):
        await fs_store.query(BOOKINGS, [
            FieldFilter("engineerId", "==", "eng-1"),
            FieldFilter("status", "!=", "cancelled"),
        ])
        filters = client.last_query.filters
        assert len(filters) == 2
        assert all(isinstance(f, firestore.FieldFilter) for f in filters)
        assert (filters[0].field_path, filters[0].op_string, filters[0].value) == (
            "engineerId", "==", "eng-1",
        )
        assert filters[1].op_string == "!="

    @pytest.mark.asyncio
    async def test_returns_ids_with_data(self, fs_store):
        keep = await fs_store.add(BOOKINGS, {"engineerId": "eng-1", "status": "pending"})
        await fs_store.add(BOOKINGS, {"engineerId": "eng-2", "status": "pending"})
        await fs_store.add(BOOKINGS, {"engineerId": "eng-1", "status": "cancelled"})
        results = await fs_store.query(BOOKINGS, [
            FieldFilter("engineerId", "==", "eng-1"),
            FieldFilter("status", "!=", "cancelled"),
        ])
        assert results == [(keep, {"engineerId": "eng-1", "status": "pending"})]

    @pytest.mark.asyncio
    async def test_no_filters_lists_collection(self, fs_store):
        await fs_store.add(BOOKINGS, {"a": 1})
        await fs_store.add(BOOKINGS, {"a": 2})
        assert len(await fs_store.query(BOOKINGS, [])) == 2


class TestCompareAndSet:
    @pytest.mark.asyncio
    async def test_first_write_expects_zero(self, fs_store):
        assert await fs_store.compare_and_set("idx", "d1", 0, {"bookings": []})
        assert (await fs_store.get("idx", "d1"))["revision"] == 1

    @pytest.mark.asyncio
    async def test_stale_revision_rejected(self, fs_store):
        await fs_store.compare_and_set("idx", "d1", 0, {"v": "a"})
        assert not await fs_store.compare_and_set("idx", "d1", 0, {"v": "b"})
        assert await fs_store.get("idx", "d1") == {"v": "a", "revision": 1}

    @pytest.mark.asyncio
    async def test_transaction_body_writes_through_transaction(self, client):
        transaction = client.transaction()
        ref = client.collection("idx").document("d1")
        assert await _apply_if_revision(transaction, ref, 0, {"v": "a"})
        assert transaction.writes == [("idx/d1", {"v": "a", "revision": 1})]

    @pytest.mark.asyncio
    async def test_transaction_body_skips_write_on_mismatch(self, client):
        client.docs["idx"] = {"d1": {"v": "a", "revision": 3}}
        transaction = client.transaction()
        ref = client.collection("idx").document("d1")
        assert not await _apply_if_revision(transaction, ref, 2, {"v": "b"})
        assert transaction.writes == []

    @pytest.mark.asyncio
    async def test_exhausted_transaction_retries_lose_the_race(self, client, monkeypatch):
        async def always_aborted(*args):
            raise ValueError("Failed to commit transaction in 5 attempts.")

        monkeypatch.setattr(firestore_store, "_write_if_revision", always_aborted)
        store = FirestoreDocumentStore(client)
        assert not await store.compare_and_set("idx", "d1", 0, {"v": "a"})


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["get", "set", "delete", "query"])
    async def test_client_errors_become_store_unavailable(self, fs_store, client, operation):
        await fs_store.set(BOOKINGS, "b1", {"status": "pending"})
        client.fail(operation, gexc.ServiceUnavailable("backend down"))
        calls = {
            "get": lambda: fs_store.get(BOOKINGS, "b1"),
            "set": lambda: fs_store.set(BOOKINGS, "b1", {}),
            "delete": lambda: fs_store.delete(BOOKINGS, "b1"),
            "query": lambda: fs_store.query(BOOKINGS, []),
        }
        with pytest.raises(StoreUnavailable, match=operation):
            await calls[operation]()

    @pytest.mark.asyncio
    async def test_deadline_on_compare_and_set(self, fs_store, client):
        client.fail("get", gexc.DeadlineExceeded("too slow"))
        with pytest.raises(StoreUnavailable, match="compare_and_set"):
            await fs_store.compare_and_set("idx", "d1", 0, {})


class TestBookingFlowOnFirestore:
    @pytest.mark.asyncio
    async def test_create_and_cancel(self, fs_store):
        directory = EngineerDirectory(fs_store)
        await directory.save_engineer(make_engineer())
        orchestrator = BookingOrchestrator(fs_store, directory, max_write_attempts=3)
        ctx = make_context("client-1", email="client1@example.com")

        booking = await orchestrator.create_booking(ctx, make_request("10:00", 2))
        index = await fs_store.get(schedule_collection("eng-1"), SESSION_DATE.isoformat())
        assert [e["id"] for e in index["bookings"]] == [booking.id]
        assert not await directory.check_availability("eng-1", SESSION_DATE, "11:00", 2)

        await orchestrator.cancel_booking(ctx, booking.id)
        assert await directory.check_availability("eng-1", SESSION_DATE, "11:00", 2)


@pytest.mark.skipif(
    not os.getenv("FIRESTORE_EMULATOR_HOST"), reason="FIRESTORE_EMULATOR_HOST not set"
)
class TestAgainstEmulator:
    @pytest.fixture
    def emulator_store(self):
        return FirestoreDocumentStore(firestore.AsyncClient(project="studio-booking-test"))

    @pytest.mark.asyncio
    async def test_round_trip_and_revision_guard(self, emulator_store):
        collection = f"test-{uuid.uuid4().hex[:8]}"
        doc_id = await emulator_store.add(collection, {"engineerId": "eng-1"})
        assert await emulator_store.query(collection, [FieldFilter("engineerId", "==", "eng-1")]) == [
            (doc_id, {"engineerId": "eng-1"})
        ]
        assert await emulator_store.compare_and_set(collection, "idx", 0, {"bookings": []})
        assert not await emulator_store.compare_and_set(collection, "idx", 0, {"bookings": []})
        await emulator_store.delete(collection, doc_id)
        with pytest.raises(NotFound):
            await emulator_store.delete(collection, doc_id)
