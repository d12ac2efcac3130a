from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession
from sqlalchemy.ext.asyncio import async_sessionmaker

from ...errors import DocumentNotFound
from ...helpers import now_ts
from ...infra.sql import Gated
from ..db import Base, Document, UniqueClaim


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)


class DocumentStore:
    def __init__(
        self, *, sessions: async_sessionmaker[AsyncSession], gated: Gated,
        indexes: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self.sessions = sessions
        self.gated = gated
        # JSON equality works on any field here; kept for parity with redis
        self.indexes = {c: tuple(f) for c, f in (indexes or {}).items()}

    async def get(self, coll: str, key: str) -> Optional[Dict[str, Any]]:
        async with self.gated():
            async with self.sessions() as db:
                row = await db.get(Document, (coll, key))
                return dict(row.data) if row else None

    async def set(self, coll: str, key: str, doc: Dict[str, Any]) -> None:
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    now = now_ts()
                    row = await db.get(
                        Document, (coll, key), with_for_update=True
                    )
                    if row is None:
                        db.add(Document(
                            collection=coll, id=key, data=dict(doc),
                            created_at=now, updated_at=now,
                        ))
                    else:
                        row.data = dict(doc)
                        row.updated_at = now

    async def create(self, coll: str, key: str, doc: Dict[str, Any]) -> bool:
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        now = now_ts()
                        db.add(Document(
                            collection=coll, id=key, data=dict(doc),
                            created_at=now, updated_at=now,
                        ))
            return True
        except IntegrityError:
            return False

    async def update(self, coll: str, key: str,
                     fields: Dict[str, Any]) -> Dict[str, Any]:
        async with self.gated():
            async with self.sessions() as db:
                async with db.begin():
                    row = await db.get(
                        Document, (coll, key), with_for_update=True
                    )
                    if row is None:
                        raise DocumentNotFound(f"{coll}/{key}")
                    # assign a new dict so the JSON column is marked dirty
                    row.data = {**row.data, **fields}
                    row.updated_at = now_ts()
                    return dict(row.data)

    async def query_all(self, coll: str, field: str,
                        value: str) -> List[Tuple[str, Dict[str, Any]]]:
        stmt = (
            select(Document)
            .where(
                Document.collection == coll,
                Document.data[field].as_string() == value,
            )
            .order_by(Document.id)
        )
        async with self.gated():
            async with self.sessions() as db:
                rows = (await db.execute(stmt)).scalars().all()
                return [(row.id, dict(row.data)) for row in rows]

    async def query_one(self, coll: str, field: str,
                        value: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        found = await self.query_all(coll, field, value)
        return found[0] if found else None

    async def create_unique(self, coll: str, key: str, doc: Dict[str, Any],
                            field: str) -> Tuple[bool, str]:
        value = str(doc[field])
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        now = now_ts()
                        db.add(UniqueClaim(
                            collection=coll, field=field, value=value,
                            doc_id=key,
                        ))
                        # claim first: a duplicate fails here, before the
                        # document is written
                        await db.flush()
                        db.add(Document(
                            collection=coll, id=key, data=dict(doc),
                            created_at=now, updated_at=now,
                        ))
            return True, key
        except IntegrityError:
            # lost the race (or a replay); the claim row names the winner
            async with self.gated():
                async with self.sessions() as db:
                    claim = await db.get(UniqueClaim, (coll, field, value))
                    if claim is None:
                        raise
                    return False, claim.doc_id
