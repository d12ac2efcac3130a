# model/docstore/__init__.py
import os
from typing import (
    Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import redis.asyncio as redis

from ...infra.sql import Gated

BACKEND = os.getenv("STORE_BACKEND", "redis").lower()  # 'redis' | 'sql'

Doc = Dict[str, Any]


class DocumentStore(Protocol):
    async def get(self, coll: str, key: str) -> Optional[Doc]: ...

    async def set(self, coll: str, key: str, doc: Doc) -> None: ...

    # insert only; returns False when coll/key already exists
    async def create(self, coll: str, key: str, doc: Doc) -> bool: ...

    # merge; raises DocumentNotFound when the document does not exist
    async def update(self, coll: str, key: str, fields: Doc) -> Doc: ...

    async def query_one(
        self, coll: str, field: str, value: str
    ) -> Optional[Tuple[str, Doc]]: ...

    async def query_all(
        self, coll: str, field: str, value: str
    ) -> list[Tuple[str, Doc]]: ...

    # insert unless some document in coll already has doc[field];
    # returns (created, key of the document holding the value)
    async def create_unique(
        self, coll: str, key: str, doc: Doc, field: str
    ) -> Tuple[bool, str]: ...


# Factory keeps server.py simple and constructor-agnostic:
def new_store(*, r: Optional[redis.Redis] = None,
              sessions: Optional[async_sessionmaker[AsyncSession]] = None,
              gated: Optional[Gated] = None,
              indexes: Optional[Mapping[str, Sequence[str]]] = None,
              backend: str = BACKEND) -> DocumentStore:
    if backend == "sql":
        if sessions is None or gated is None:
            raise RuntimeError(
                "DocumentStore(sql) requires sessions= and gated="
            )
        from ._sql import DocumentStore as _SqlStore
        return _SqlStore(sessions=sessions, gated=gated, indexes=indexes)
    if r is None:
        raise RuntimeError("DocumentStore(redis) requires r=redis.Redis")
    from ._redis import DocumentStore as _RedisStore
    return _RedisStore(r=r, indexes=indexes)


__all__ = ["DocumentStore", "Doc", "new_store", "BACKEND"]
