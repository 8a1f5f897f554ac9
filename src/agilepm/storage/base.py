"""Base storage class and helpers.

Contains initialization, collection management, and shared utilities.
"""

from __future__ import annotations

import hashlib
from typing import Any, TypeVar

from pydantic import BaseModel
from qdrant_client import AsyncQdrantClient, models

from agilepm.config import settings
from agilepm.exceptions import StorageError

RecordT = TypeVar("RecordT", bound=BaseModel)

# Collection names by record type
COLLECTION_NAMES = {
    "webhooks": "webhooks",
    "webhook_deliveries": "webhook_deliveries",
    "projects": "projects",
}

# Records are looked up by payload filters only, never by similarity
PLACEHOLDER_VECTOR = [1.0]

# Payload fields indexed for filtering, per collection
INDEXED_FIELDS = {
    "webhooks": ("company_id", "project_id", "events"),
    "webhook_deliveries": ("company_id", "subscription_id", "status"),
    "projects": ("company_id",),
}


class StorageBase:
    """Base class for AgilePM storage with initialization and helpers.

    Provides:
    - Client initialization and lifecycle management
    - Collection creation and indexing
    - Key building and point ID conversion
    - Payload serialization/deserialization
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        prefix: str | None = None,
    ) -> None:
        """Initialize storage client.

        Args:
            url: Qdrant server URL, or ":memory:" for an in-process store.
                Defaults to settings.qdrant_url.
            api_key: Qdrant API key. Defaults to settings.qdrant_api_key.
            prefix: Collection name prefix. Defaults to settings.collection_prefix.
        """
        self._url = url or settings.qdrant_url
        self._api_key = api_key or settings.qdrant_api_key
        self._prefix = prefix or settings.collection_prefix
        self._scroll_limit = settings.storage_max_scroll_limit
        self._client: AsyncQdrantClient | None = None
        self._collections_initialized = False

    @property
    def client(self) -> AsyncQdrantClient:
        """Get the Qdrant client, raising if not initialized."""
        if self._client is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        return self._client

    async def initialize(self) -> None:
        """Initialize the storage client and ensure collections exist."""
        if self._client is None:
            if self._url == ":memory:":
                self._client = AsyncQdrantClient(location=":memory:")
            else:
                self._client = AsyncQdrantClient(url=self._url, api_key=self._api_key)
        try:
            await self._ensure_collections()
        except Exception as e:
            raise StorageError(f"Failed to prepare collections at {self._url}: {e}") from e
        self._collections_initialized = True

    async def close(self) -> None:
        """Close the storage client connection."""
        if self._client is not None:
            await self._client.close()
            self._client = None
            self._collections_initialized = False

    def _collection_name(self, record_type: str) -> str:
        """Get full collection name with prefix."""
        suffix = COLLECTION_NAMES.get(record_type, record_type)
        return f"{self._prefix}_{suffix}"

    @staticmethod
    def _build_key(record_id: str, company_id: str | None = None) -> str:
        """Build a multi-tenancy key for storage.

        - Tenant-owned records: {company_id}/{record_id}
        - Directory records: global/{record_id}
        """
        if company_id:
            return f"{company_id}/{record_id}"
        return f"global/{record_id}"

    @staticmethod
    def _key_to_point_id(key: str) -> str:
        """Convert a storage key to a valid Qdrant point ID.

        Qdrant requires point IDs to be UUIDs or unsigned integers.
        We hash the key to create a deterministic UUID-format string.
        """
        h = hashlib.sha256(key.encode()).hexdigest()[:32]
        return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:32]}"

    async def _ensure_collections(self) -> None:
        """Ensure all required collections exist."""
        collections = await self.client.get_collections()
        existing = {c.name for c in collections.collections}

        for record_type in COLLECTION_NAMES:
            collection_name = self._collection_name(record_type)
            if collection_name in existing:
                continue
            await self.client.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(
                    size=len(PLACEHOLDER_VECTOR),
                    distance=models.Distance.DOT,
                ),
            )
            if self._url == ":memory:":
                # Local mode ignores payload indexes
                continue
            for field_name in INDEXED_FIELDS[record_type]:
                await self.client.create_payload_index(
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                )

    async def _upsert(self, record_type: str, key: str, record: BaseModel) -> None:
        payload = record.model_dump(mode="json")
        await self.client.upsert(
            collection_name=self._collection_name(record_type),
            points=[
                models.PointStruct(
                    id=self._key_to_point_id(key),
                    vector=PLACEHOLDER_VECTOR,
                    payload=payload,
                )
            ],
        )

    async def _retrieve(
        self, record_type: str, key: str, record_class: type[RecordT]
    ) -> RecordT | None:
        results = await self.client.retrieve(
            collection_name=self._collection_name(record_type),
            ids=[self._key_to_point_id(key)],
            with_payload=True,
        )
        if not results or results[0].payload is None:
            return None
        return self._payload_to_record(results[0].payload, record_class)

    async def _scroll(
        self,
        record_type: str,
        conditions: list[Any],
        record_class: type[RecordT],
        limit: int | None = None,
    ) -> list[RecordT]:
        """Fetch matching records.

        Without ``limit`` every match is returned, paging through the
        collection ``_scroll_limit`` points at a time. Points come back in
        point-id order, so callers sort the result themselves.
        """
        scroll_filter = models.Filter(must=conditions) if conditions else None
        records: list[RecordT] = []
        offset: Any = None
        while True:
            page_size = self._scroll_limit if limit is None else limit - len(records)
            results, offset = await self.client.scroll(
                collection_name=self._collection_name(record_type),
                scroll_filter=scroll_filter,
                limit=page_size,
                offset=offset,
                with_payload=True,
            )
            records.extend(
                self._payload_to_record(r.payload, record_class)
                for r in results
                if r.payload is not None
            )
            if offset is None or (limit is not None and len(records) >= limit):
                return records

    @staticmethod
    def _match(key: str, value: Any) -> models.FieldCondition:
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))

    @staticmethod
    def _payload_to_record(payload: dict[str, Any], record_class: type[RecordT]) -> RecordT:
        """Convert Qdrant payload back to a model."""
        return record_class.model_validate(payload)
