from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import orjson
import redis.asyncio as redis

from ...errors import DocumentNotFound


# ---- keys
def k_doc(coll: str, key: str) -> str: return f"doc:{coll}:{key}"
def k_idx(coll: str, field: str, value: Any) -> str: return f"idx:{coll}:{field}:{value}"
def k_uniq(coll: str, field: str, value: Any) -> str: return f"uniq:{coll}:{field}:{value}"


def _loads(raw) -> Optional[Dict[str, Any]]:
    return orjson.loads(raw) if raw else None


class DocumentStore:
    """JSON documents in plain string keys, with set-based equality indexes.

    Every multi-key write runs under WATCH/MULTI on the document (or claim)
    key so a merge never loses a concurrent write and index sets never drift
    from the documents they point at.

    Expects a client created with decode_responses=True.
    """

    def __init__(self, r: redis.Redis,
                 indexes: Optional[Mapping[str, Sequence[str]]] = None
                 ) -> None:
        self.r = r
        self.indexes = {c: tuple(f) for c, f in (indexes or {}).items()}

    def _indexed(self, coll: str) -> Tuple[str, ...]:
        return self.indexes.get(coll, ())

    def _reindex(self, pipe, coll: str, key: str,
                 old: Optional[Dict[str, Any]], new: Dict[str, Any]) -> None:
        for field in self._indexed(coll):
            before = (old or {}).get(field)
            after = new.get(field)
            if before == after:
                continue
            if before is not None:
                pipe.srem(k_idx(coll, field, before), key)
            if after is not None:
                pipe.sadd(k_idx(coll, field, after), key)

    async def get(self, coll: str, key: str) -> Optional[Dict[str, Any]]:
        return _loads(await self.r.get(k_doc(coll, key)))

    async def set(self, coll: str, key: str, doc: Dict[str, Any]) -> None:
        dk = k_doc(coll, key)

        async def _tx(pipe):
            old = _loads(await pipe.get(dk))
            pipe.multi()
            pipe.set(dk, orjson.dumps(doc))
            self._reindex(pipe, coll, key, old, doc)

        await self.r.transaction(_tx, dk)

    async def create(self, coll: str, key: str, doc: Dict[str, Any]) -> bool:
        dk = k_doc(coll, key)

        async def _tx(pipe):
            if await pipe.exists(dk):
                return False
            pipe.multi()
            pipe.set(dk, orjson.dumps(doc))
            self._reindex(pipe, coll, key, None, doc)
            return True

        return await self.r.transaction(_tx, dk, value_from_callable=True)

    async def update(self, coll: str, key: str,
                     fields: Dict[str, Any]) -> Dict[str, Any]:
        dk = k_doc(coll, key)

        async def _tx(pipe):
            old = _loads(await pipe.get(dk))
            if old is None:
                raise DocumentNotFound(f"{coll}/{key}")
            new = {**old, **fields}
            pipe.multi()
            pipe.set(dk, orjson.dumps(new))
            self._reindex(pipe, coll, key, old, new)
            return new

        return await self.r.transaction(_tx, dk, value_from_callable=True)

    async def query_all(self, coll: str, field: str,
                        value: str) -> List[Tuple[str, Dict[str, Any]]]:
        if field not in self._indexed(coll):
            raise ValueError(f"{coll}.{field} is not indexed")
        keys = sorted(await self.r.smembers(k_idx(coll, field, value)))
        if not keys:
            return []
        raws = await self.r.mget([k_doc(coll, k) for k in keys])
        out = []
        for key, raw in zip(keys, raws):
            doc = _loads(raw)
            # index entries are removed in the same MULTI as the document
            # changes, but skip anything stale rather than trust it
            if doc is not None and doc.get(field) == value:
                out.append((key, doc))
        return out

    async def query_one(self, coll: str, field: str,
                        value: str) -> Optional[Tuple[str, Dict[str, Any]]]:
        found = await self.query_all(coll, field, value)
        return found[0] if found else None

    async def create_unique(self, coll: str, key: str, doc: Dict[str, Any],
                            field: str) -> Tuple[bool, str]:
        uk = k_uniq(coll, field, doc[field])
        dk = k_doc(coll, key)

        async def _tx(pipe):
            winner = await pipe.get(uk)
            if winner is not None:
                return False, winner
            pipe.multi()
            pipe.set(uk, key)
            pipe.set(dk, orjson.dumps(doc))
            self._reindex(pipe, coll, key, None, doc)
            return True, key

        # a concurrent claimer makes EXEC fail with WatchError; redis-py
        # retries the callable, which then sees the winner
        return await self.r.transaction(_tx, uk, value_from_callable=True)
