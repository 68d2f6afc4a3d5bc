"""MongoDB Data API transport for the BrainSAIT document store."""

from typing import Any

from edge_gateway.normalizer import ResponseNormalizer
from edge_gateway.upstream.base import join_url, post


class DocumentStoreClient:
    def __init__(
        self,
        api_key: str,
        base_url: str,
        database: str = "brainsait_platform",
        data_source: str = "Cluster0",
        timeout_s: float = 30.0,
        normalizer: ResponseNormalizer | None = None,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self._database = database
        self._data_source = data_source
        self._timeout = timeout_s
        self._normalizer = normalizer or ResponseNormalizer("document store")

    def _envelope(self, collection: str, **fields: Any) -> dict[str, Any]:
        return {
            "collection": collection,
            "database": self._database,
            "dataSource": self._data_source,
            **fields,
        }

    async def _action(self, action: str, body: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Access-Control-Request-Headers": "*",
            "api-key": self._api_key,
        }
        reply = await post(
            join_url(self._base_url, f"/action/{action}"),
            self._normalizer,
            headers=headers,
            timeout_s=self._timeout,
            json=body,
        )
        return reply.data if isinstance(reply.data, dict) else {}

    async def find(self, collection: str, filter_: dict[str, Any]) -> list[dict[str, Any]]:
        result = await self._action("find", self._envelope(collection, filter=filter_))
        documents = result.get("documents")
        return documents if isinstance(documents, list) else []

    async def insert_one(self, collection: str, document: dict[str, Any]) -> dict[str, Any]:
        return await self._action("insertOne", self._envelope(collection, document=document))

    async def update_one(
        self,
        collection: str,
        filter_: dict[str, Any],
        update: dict[str, Any],
    ) -> int:
        result = await self._action(
            "updateOne", self._envelope(collection, filter=filter_, update=update)
        )
        modified = result.get("modifiedCount", 0)
        return modified if isinstance(modified, int) else 0
