import asyncio
import logging
from typing import Any, Dict, List, Optional

from multiformats import CID

from . import crypto
from .block import AddBlockRequest, AddBlockResponse, Block, RemoteResolveResult
from .dag import Dag
from .errors import FetchError, UnsupportedTransaction
from .pubsub import TopicBus, topic_for
from .store import BlockStore, Node, SqliteBlockStore
from .tree import AUTHENTICATIONS_PATH, CHAIN_END_PATH
from .tx import SetData, SetOwnership
from .utils import decode, digest_of, encode, split_path

logger = logging.getLogger(__name__)


def _normalize_owner(entry: str) -> str:
    if entry.startswith(crypto.DID_PREFIX):
        entry = crypto.address_from_did(entry)
    return entry.lower()


class LocalAggregator:
    """Single-signer validator: checks and applies AddBlockRequests, tracks one tip per DID.

    Acts as both the remote resolver and the block submitter for local use and tests.
    """

    def __init__(self, store: BlockStore, bus: Optional[TopicBus] = None) -> None:
        self.store = store
        self.bus = bus
        self._tips: Dict[str, CID] = {}
        self._lock = asyncio.Lock()

    async def get_tip(self, did: str) -> Optional[CID]:
        tip = self._tips.get(did)
        if tip is None and isinstance(self.store, SqliteBlockStore):
            tip = self.store.get_tip(did)
            if tip is not None:
                self._tips[did] = tip
        return tip

    def _set_tip(self, did: str, tip: CID) -> None:
        self._tips[did] = tip
        if isinstance(self.store, SqliteBlockStore):
            self.store.set_tip(did, tip)

    async def resolve(self, did: str, path: str, want_provenance: bool = False) -> RemoteResolveResult:
        tip = await self.get_tip(did)
        if tip is None:
            logger.debug("resolve %s not found", did)
            return RemoteResolveResult(remainder_path=split_path(path))
        res = await Dag(tip, self.store).resolve(path, want_provenance=True)
        nodes: List[Node] = []
        if want_provenance:
            nodes = [await self.store.get(cid) for cid in res.touched_nodes]
        return RemoteResolveResult(
            value=res.value, remainder_path=res.remainder_path, touched_nodes=nodes
        )

    async def add_block(self, abr: AddBlockRequest) -> AddBlockResponse:
        async with self._lock:
            resp = await self._add_block(abr)
        if resp.valid and self.bus is not None:
            await self.bus.publish(
                topic_for(abr.did),
                {"did": abr.did, "height": abr.height, "newTip": str(resp.new_tip)},
            )
        return resp

    async def _add_block(self, abr: AddBlockRequest) -> AddBlockResponse:
        logger.debug("add %s %d", abr.object_id, abr.height)
        try:
            did = abr.did
            crypto.address_from_did(did)
            raw = decode(abr.payload)
            block = Block.from_obj(raw)
            previous_tip = CID.decode(abr.previous_tip)
        except Exception as exc:
            return self._reject(f"invalid request: {exc}")

        if block.height != abr.height:
            return self._reject("request height does not match block height")

        current = await self.get_tip(did)
        if current is not None and bytes(current) != abr.previous_tip:
            return self._reject(f"previous tip did not match existing tip: {current}")

        await self.store.put_many(Node.from_bytes(s) for s in abr.state)

        prev = Dag(previous_tip, self.store)
        try:
            root = await prev.get(previous_tip)
            end = await prev.resolve(CHAIN_END_PATH)
            chain = await prev.resolve("chain")
            auths = await prev.resolve(AUTHENTICATIONS_PATH)
        except FetchError as exc:
            return self._reject(f"missing state: {exc}")

        if not isinstance(root, dict) or root.get("id") != did:
            return self._reject("previous tip does not belong to this tree")

        prev_height = end.value.get("height") if isinstance(end.value, dict) else None
        expected = prev_height + 1 if prev_height is not None else 0
        if block.height != expected:
            return self._reject(f"expected height {expected}, got {block.height}")
        if expected > 0:
            if block.previous_tip != previous_tip:
                return self._reject("block previousTip does not match request")
            chain_end = chain.value.get("end") if isinstance(chain.value, dict) else None
            if block.previous_block != chain_end:
                return self._reject("block previousBlock does not match chain end")

        if auths.found and isinstance(auths.value, list):
            owners = {_normalize_owner(str(a)) for a in auths.value}
        else:
            owners = {crypto.address_from_did(did).lower()}

        unsigned = {k: v for k, v in raw.items() if k != "headers"}
        digest = digest_of(encode(unsigned))
        if not block.signatures:
            return self._reject("block is not signed")
        for addr, sig in block.signatures.items():
            try:
                recovered = crypto.recover_address(digest, sig.signature)
            except ValueError as exc:
                return self._reject(f"bad signature from {addr}: {exc}")
            if recovered.lower() != addr.lower():
                return self._reject(f"signature does not match signer {addr}")
            if addr.lower() not in owners:
                return self._reject(f"{addr} is not an owner")

        created: List[Node] = []
        tree = root.get("tree")
        try:
            for record in block.transactions:
                tx = record.to_transaction()
                if isinstance(tx, SetData):
                    path = ["data"] + split_path(tx.path)
                    tree = await self._set_path(tree, path, tx.decoded_value(), created)
                elif isinstance(tx, SetOwnership):
                    path = split_path(AUTHENTICATIONS_PATH)[1:]
                    tree = await self._set_path(tree, path, list(tx.authentications), created)
        except (UnsupportedTransaction, FetchError) as exc:
            return self._reject(str(exc))

        block_node = Node.from_bytes(abr.payload)
        chain_node = Node.wrap({"end": block_node.cid})
        root_node = Node.wrap({"id": did, "tree": tree, "chain": chain_node.cid})
        created.extend([block_node, chain_node, root_node])

        await self.store.put_many(created)
        self._set_tip(did, root_node.cid)
        logger.info("storing %s (height: %d) new tip: %s", did, block.height, root_node.cid)
        return AddBlockResponse(
            valid=True, new_tip=root_node.cid, new_nodes=[n.data for n in created]
        )

    async def _set_path(self, current: Any, segments: List[str], value: Any, created: List[Node]) -> CID:
        """Write value at segments below current, one linked node per segment."""
        if isinstance(current, CID):
            current = (await self.store.get(current)).value()
        node = dict(current) if isinstance(current, dict) else {}
        head, rest = segments[0], segments[1:]
        if rest:
            node[head] = await self._set_path(node.get(head), rest, value, created)
        else:
            node[head] = value
        wrapped = Node.wrap(node)
        created.append(wrapped)
        return wrapped.cid

    def _reject(self, reason: str) -> AddBlockResponse:
        logger.warning("rejected block: %s", reason)
        return AddBlockResponse.rejected(reason)
