import logging
from typing import Any, List, Optional

from multiformats import CID

from .block import AddBlockResponse
from .errors import NotFoundError
from .remote import RemoteTree
from .store import BlockStore
from .tree import ChainTree
from .tx import Transaction

logger = logging.getLogger(__name__)


class Community:
    """Ties a local store to a remote submitter/resolver (a Client or a LocalAggregator)."""

    def __init__(self, remote: Any, store: BlockStore, resolver: Optional[Any] = None) -> None:
        self.submitter = remote
        self.resolver = resolver or remote
        self.store = store

    async def play_transactions(self, tree: ChainTree, transactions: List[Transaction]) -> AddBlockResponse:
        did = await tree.id()
        abr = await tree.new_add_block_request(transactions)
        resp = await self.submitter.add_block(abr)
        if not resp.valid:
            logger.warning("block for %s rejected: %s", did, "; ".join(resp.errors))
            return resp
        logger.info("tree %s updated to %s", did, resp.new_tip)
        await tree.apply_response(resp)
        return resp

    async def get_tip(self, did: str) -> CID:
        resp = await self.resolver.resolve(did, "/", True)
        if not resp.touched_nodes:
            raise NotFoundError("/", [did])
        await self.store.put_many(resp.touched_nodes)
        return resp.touched_nodes[0].cid

    async def get_latest(self, did: str, key=None) -> RemoteTree:
        tip = await self.get_tip(did)
        logger.debug("getLatest %s: %s", did, tip)
        return RemoteTree(tip=tip, store=self.store, resolver=self.resolver, did=did, key=key)
