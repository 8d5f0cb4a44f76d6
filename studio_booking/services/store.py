"""
Document store contract and an in-memory implementation.

In production this is ``FirestoreDocumentStore`` (``firestore_store.py``):
atomic single-document writes and equality/inequality filters on indexed
fields, with no multi-document transactions used. ``compare_and_set`` is
the one conditional write the booking core relies on.

The in-memory store is the test double. It yields to the event loop on
every call so concurrent requests interleave the way they would against a
remote database, and it can be told to fail specific operations to
exercise error paths.
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

from studio_booking.errors import NotFound, StoreUnavailable

logger = logging.getLogger(__name__)

BOOKINGS = "bookings"
ENGINEERS = "engineers"
REVISION_FIELD = "revision"


def schedule_collection(engineer_id: str) -> str:
    """Sub-collection holding one schedule-index document per date."""
    return f"{ENGINEERS}/{engineer_id}/schedule"


@dataclass(frozen=True)
class FieldFilter:
    """Equality or inequality filter on a top-level document field."""

    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in ("==", "!="):
            raise ValueError(f"Unsupported filter operator: {self.op!r}")

    def matches(self, data: dict[str, Any]) -> bool:
        if self.op == "==":
            return data.get(self.field) == self.value
        return self.field in data and data[self.field] != self.value


class DocumentStore(Protocol):
    """Async per-document store. Document ids are opaque strings."""

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]: ...

    async def add(self, collection: str, data: dict[str, Any]) -> str: ...

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def query(
        self, collection: str, filters: Sequence[FieldFilter]
    ) -> list[tuple[str, dict[str, Any]]]: ...

    async def compare_and_set(
        self, collection: str, doc_id: str, expected_revision: int, data: dict[str, Any]
    ) -> bool:
        """Write ``data`` with ``revision = expected_revision + 1`` only if the
        stored revision (0 for a missing document) equals ``expected_revision``."""
        ...


class InMemoryDocumentStore:
    """Dictionary-backed DocumentStore used as the test double."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._faults: list[tuple[str, Optional[str], Exception]] = []

    # ------------------------------------------------------------------ #
    # Fault injection
    # ------------------------------------------------------------------ #

    def inject_fault(
        self,
        operation: str,
        collection: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """Make the next matching call raise ``error`` (StoreUnavailable by default)."""
        exc = error or StoreUnavailable(f"Injected failure on {operation}")
        self._faults.append((operation, collection, exc))

    async def _enter(self, operation: str, collection: str) -> None:
        await asyncio.sleep(0)
        for i, (op, coll, exc) in enumerate(self._faults):
            if op == operation and (coll is None or coll == collection):
                del self._faults[i]
                logger.debug("Injected %s failure on %s", operation, collection)
                raise exc

    # ------------------------------------------------------------------ #
    # DocumentStore
    # ------------------------------------------------------------------ #

    async def get(self, collection: str, doc_id: str) -> Optional[dict[str, Any]]:
        await self._enter("get", collection)
        doc = self._collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        await self._enter("add", collection)
        doc_id = uuid.uuid4().hex[:20]
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        return doc_id

    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        await self._enter("set", collection)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._enter("delete", collection)
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise NotFound("document", f"{collection}/{doc_id}")
        del docs[doc_id]

    async def query(
        self, collection: str, filters: Sequence[FieldFilter]
    ) -> list[tuple[str, dict[str, Any]]]:
        await self._enter("query", collection)
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._collections.get(collection, {}).items()
            if all(f.matches(data) for f in filters)
        ]

    async def compare_and_set(
        self, collection: str, doc_id: str, expected_revision: int, data: dict[str, Any]
    ) -> bool:
        await self._enter("compare_and_set", collection)
        docs = self._collections.setdefault(collection, {})
        current = docs.get(doc_id)
        current_revision = current.get(REVISION_FIELD, 0) if current is not None else 0
        if current_revision != expected_revision:
            logger.debug(
                "Revision mismatch on %s/%s: expected %d, found %d",
                collection, doc_id, expected_revision, current_revision,
            )
            return False
        stored = copy.deepcopy(data)
        stored[REVISION_FIELD] = expected_revision + 1
        docs[doc_id] = stored
        return True

    # ------------------------------------------------------------------ #
    # Test helpers
    # ------------------------------------------------------------------ #

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    def reset(self) -> None:
        """Clear all documents and pending faults."""
        self._collections.clear()
        self._faults.clear()
