"""
Cloud Firestore implementation of the DocumentStore contract.

Collection names map one-to-one onto Firestore collection paths, so the
schedule index for an engineer lives in ``engineers/{id}/schedule/{date}``.
``compare_and_set`` runs as a read-then-write transaction on the
``revision`` field; every other call is a single-document operation or a
plain query.

Client errors surface as ``StoreUnavailable`` so callers can retry the whole
operation.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

from google.api_core import exceptions as gexc
from google.cloud import firestore

from studio_booking.config import settings
from studio_booking.errors import NotFound, StoreUnavailable
from studio_booking.logging_context import get_request_logger
from studio_booking.services.store import REVISION_FIELD, FieldFilter

logger = get_request_logger(__name__)


@contextmanager
def _store_errors(operation: str, path: str) -> Iterator[None]:
    try:
        yield
    except (gexc.GoogleAPICallError, gexc.RetryError) as exc:
        logger.error("Firestore %s failed on %s: %s", operation, path, exc)
        raise StoreUnavailable(f"Firestore {operation} failed on {path}: {exc}") from exc


async def _apply_if_revision(
    transaction, ref, expected_revision: int, data: dict[str, Any]
) -> bool:
    snapshot = await ref.get(transaction=transaction)
    current = (snapshot.to_dict() or {}) if snapshot.exists else {}
    current_revision = current.get(REVISION_FIELD, 0)
    if current_revision != expected_revision:
        logger.debug(
            "Revision mismatch on %s: expected %d, found %d",
            ref.path, expected_revision, current_revision,
        )
        return False
    transaction.set(ref, {**data, REVISION_FIELD: expected_revision + 1})
    return True


_write_if_revision = firestore.async_transactional(_apply_if_revision)


class FirestoreDocumentStore:
    """DocumentStore backed by ``google.cloud.firestore.AsyncClient``."""

    def __init__(self, client: Optional[firestore.AsyncClient] = None) -> None:
        if client is None:
            client = firestore.AsyncClient(
                project=settings.store.project_id or None,
                database=settings.store.database,
            )
        self._client = client

    def _document(self, collection: str, doc_id: str):
        return self._client.collection(collection).document(doc_id)

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        with _store_errors("get", f"{collection}/{doc_id}"):
            snapshot = await self._document(collection, doc_id).get()
        return snapshot.to_dict() if snapshot.exists else None

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        with _store_errors("add", collection):
            _, ref = await self._client.collection(collection).add(data)
        return ref.id

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        with _store_errors("set", f"{collection}/{doc_id}"):
            await self._document(collection, doc_id).set(data)

    async def delete(self, collection: str, doc_id: str) -> None:
        path = f"{collection}/{doc_id}"
        with _store_errors("delete", path):
            try:
                await self._document(collection, doc_id).delete(
                    option=self._client.write_option(exists=True)
                )
            except gexc.NotFound:
                raise NotFound("document", path) from None

    async def query(
        self, collection: str, filters: Sequence[FieldFilter]
    ) -> list[tuple[str, dict[str, Any]]]:
        query = self._client.collection(collection)
        for f in filters:
            query = query.where(filter=firestore.FieldFilter(f.field, f.op, f.value))
        with _store_errors("query", collection):
            return [(snapshot.id, snapshot.to_dict()) async for snapshot in query.stream()]

    async def compare_and_set(
        self, collection: str, doc_id: str, expected_revision: int, data: dict[str, Any]
    ) -> bool:
        path = f"{collection}/{doc_id}"
        with _store_errors("compare_and_set", path):
            try:
                return await _write_if_revision(
                    self._client.transaction(),
                    self._document(collection, doc_id),
                    expected_revision,
                    data,
                )
            except ValueError as exc:
                # Raised once the transaction has been aborted by contention on every attempt
                logger.warning("Transaction on %s gave up under contention: %s", path, exc)
                return False
