import logging
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from multiformats import CID

from .errors import NodeNotFound
from .utils import cid_for, decode, encode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Node:
    cid: CID
    data: bytes

    @staticmethod
    def wrap(value: Any) -> "Node":
        data = encode(value)
        return Node(cid=cid_for(data), data=data)

    @staticmethod
    def from_bytes(data: bytes) -> "Node":
        return Node(cid=cid_for(data), data=bytes(data))

    def value(self) -> Any:
        return decode(self.data)


def as_cid(value) -> CID:
    if isinstance(value, CID):
        return value
    return CID.decode(value)


class BlockStore:
    """Content-addressed node storage. Missing nodes raise NodeNotFound."""

    async def get(self, cid: CID) -> Node:
        raise NotImplementedError

    async def put(self, node: Node) -> None:
        raise NotImplementedError

    async def has(self, cid: CID) -> bool:
        raise NotImplementedError

    async def put_many(self, nodes: Iterable[Node]) -> None:
        for node in nodes:
            await self.put(node)

    async def get_many(self, cids: Iterable[CID]) -> AsyncIterator[Node]:
        for cid in cids:
            yield await self.get(cid)


class MemoryBlockStore(BlockStore):
    def __init__(self) -> None:
        self._nodes: Dict[CID, bytes] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    async def get(self, cid: CID) -> Node:
        data = self._nodes.get(as_cid(cid))
        if data is None:
            raise NodeNotFound(cid)
        return Node(cid=as_cid(cid), data=data)

    async def put(self, node: Node) -> None:
        self._nodes.setdefault(node.cid, node.data)

    async def has(self, cid: CID) -> bool:
        return as_cid(cid) in self._nodes


class SqliteBlockStore(BlockStore):
    def __init__(self, path: str):
        dir_name = os.path.dirname(path)
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        self.conn = sqlite3.connect(path)
        self._init_tables()

    def _init_tables(self) -> None:
        cur = self.conn.cursor()
        cur.execute("CREATE TABLE IF NOT EXISTS nodes (cid TEXT PRIMARY KEY, data BLOB)")
        cur.execute("CREATE TABLE IF NOT EXISTS meta (key TEXT PRIMARY KEY, value TEXT)")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    async def get(self, cid: CID) -> Node:
        cur = self.conn.cursor()
        cur.execute("SELECT data FROM nodes WHERE cid = ?", (str(cid),))
        row = cur.fetchone()
        if not row:
            raise NodeNotFound(cid)
        return Node(cid=as_cid(cid), data=bytes(row[0]))

    async def put(self, node: Node) -> None:
        await self.put_many([node])

    async def put_many(self, nodes: Iterable[Node]) -> None:
        rows = [(str(node.cid), node.data) for node in nodes]
        cur = self.conn.cursor()
        cur.executemany("INSERT OR IGNORE INTO nodes (cid, data) VALUES (?, ?)", rows)
        self.conn.commit()
        logger.debug("stored %d nodes", len(rows))

    async def has(self, cid: CID) -> bool:
        cur = self.conn.cursor()
        cur.execute("SELECT 1 FROM nodes WHERE cid = ?", (str(cid),))
        return cur.fetchone() is not None

    def count(self) -> int:
        cur = self.conn.cursor()
        cur.execute("SELECT COUNT(*) FROM nodes")
        return int(cur.fetchone()[0])

    def get_meta(self, key: str) -> Optional[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT value FROM meta WHERE key = ?", (key,))
        row = cur.fetchone()
        if not row:
            return None
        return row[0]

    def set_meta(self, key: str, value: str) -> None:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)",
            (key, value),
        )
        self.conn.commit()

    def get_tip(self, name: str) -> Optional[CID]:
        raw = self.get_meta(f"tip:{name}")
        if raw is None:
            return None
        return CID.decode(raw)

    def set_tip(self, name: str, cid: CID) -> None:
        self.set_meta(f"tip:{name}", str(cid))

    def tips(self) -> List[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT key FROM meta WHERE key LIKE 'tip:%'")
        return [row[0][4:] for row in cur.fetchall()]
