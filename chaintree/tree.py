import asyncio
import logging
from typing import Dict, List, Optional

from multiformats import CID

from .block import AddBlockRequest, AddBlockResponse, Block, SignatureRecord
from .dag import Dag, ResolveResult
from .errors import ConfigurationError
from .store import BlockStore, Node
from .tx import SetData, Transaction, to_record
from .wallet import Wallet

logger = logging.getLogger(__name__)

DATA_PATH = "tree/data"
AUTHENTICATIONS_PATH = "tree/_tupelo/authentications"
CHAIN_END_PATH = "chain/end"


def data_path(path: str) -> str:
    return DATA_PATH + "/" + path.strip("/")


class ChainTree(Dag):
    """A DID-named DAG: the signed block log under `chain` and current state under `tree`."""

    def __init__(self, tip: CID, store: BlockStore, key: Optional[Wallet] = None) -> None:
        super().__init__(tip, store)
        self.key = key
        self._tip_lock = asyncio.Lock()
        self._tip_height: Optional[int] = None

    @classmethod
    async def new_empty_tree(cls, store: BlockStore, key: Wallet, **kwargs) -> "ChainTree":
        empty = Node.wrap({})
        root = Node.wrap({"chain": empty.cid, "tree": empty.cid, "id": key.did})
        await store.put_many([root, empty])
        return cls(tip=root.cid, store=store, key=key, **kwargs)

    async def set_tip(self, tip: CID, height: Optional[int] = None) -> bool:
        """Move the tip unless a tip at a greater known height is already set."""
        async with self._tip_lock:
            if height is not None and self._tip_height is not None and height < self._tip_height:
                return False
            self._tip = tip
            self._tip_height = height
            return True

    async def id(self) -> Optional[str]:
        resp = await self.resolve("id")
        return resp.value

    async def resolve_data(self, path: str, want_provenance: bool = False) -> ResolveResult:
        return await self.resolve(data_path(path), want_provenance)

    async def height(self) -> int:
        resp = await self.resolve(CHAIN_END_PATH + "/height")
        if resp.value is None:
            return -1
        return int(resp.value)

    async def _collect_state(self, tip: CID, transactions: List[Transaction]):
        """Resolve everything the validator needs; returns (results by path, touched cids)."""
        paths = [CHAIN_END_PATH, "chain", AUTHENTICATIONS_PATH, DATA_PATH]
        paths.extend(data_path(tx.path) for tx in transactions if isinstance(tx, SetData))
        results = await asyncio.gather(
            *(self.resolve_at(tip, p, want_provenance=True) for p in paths)
        )
        # insertion-ordered set
        state: Dict[CID, None] = {}
        for res in results:
            for cid in res.touched_nodes or []:
                state.setdefault(cid, None)
        return dict(zip(paths, results)), list(state)

    async def new_add_block_request(self, transactions: List[Transaction]) -> AddBlockRequest:
        if self.key is None:
            raise ConfigurationError("a signing key is required to create an AddBlockRequest")

        records = [to_record(tx) for tx in transactions]

        tip = self.tip
        did = (await self.resolve_at(tip, "id")).value or self.key.did
        resolved, state_cids = await self._collect_state(tip, transactions)

        previous = resolved[CHAIN_END_PATH].value
        if not isinstance(previous, dict):
            previous = {}
        prev_height = previous.get("height")
        next_height = int(prev_height) + 1 if prev_height is not None else 0

        block = Block(height=next_height, transactions=records)
        if next_height > 0:
            block.previous_tip = tip
            block.previous_block = (resolved["chain"].value or {}).get("end")

        signed = self.key.sign_object(block.payload_obj())
        block.signatures[self.key.address] = SignatureRecord(signature=signed.signature)

        state = []
        async for node in self.store.get_many(state_cids):
            state.append(node.data)

        logger.debug(
            "built block %d for %s with %d state nodes", next_height, did, len(state)
        )
        return AddBlockRequest(
            previous_tip=bytes(tip),
            object_id=did.encode("utf-8"),
            height=next_height,
            payload=block.encode(),
            state=state,
        )

    async def apply_response(self, resp: AddBlockResponse) -> bool:
        """Store the accepted block's nodes and move the tip. Rejections leave the tree as is."""
        if not resp.valid or resp.new_tip is None:
            logger.warning("not applying rejected block: %s", "; ".join(resp.errors))
            return False
        await self.store.put_many(resp.nodes())
        height = (await self.resolve_at(resp.new_tip, CHAIN_END_PATH + "/height")).value
        if not await self.set_tip(resp.new_tip, height):
            logger.info("not moving tip back to %s (height %s)", resp.new_tip, height)
            return False
        logger.info("tip updated to %s", resp.new_tip)
        return True
