import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from multiformats import CID

from .block import RemoteResolveResult
from .dag import ResolveResult
from .errors import NodeNotFound, NotFoundError
from .pubsub import EventHook, Subscription, topic_for
from .store import BlockStore
from .tree import CHAIN_END_PATH, ChainTree
from .utils import split_path
from .wallet import Wallet

logger = logging.getLogger(__name__)


class ResolveState(enum.Enum):
    LOCAL = "local"
    REMOTE_FALLBACK = "remote_fallback"


@dataclass
class LocalAttempt:
    state: ResolveState
    result: Optional[ResolveResult] = None
    missing: Optional[NodeNotFound] = None


class RemoteTree(ChainTree):
    """A ChainTree that fetches from a remote resolver whatever it lacks locally.

    `resolver` needs `resolve(did, path, want_provenance)`; `channel` needs
    `subscribe(topic, callback)` returning a cancellable Subscription.
    """

    def __init__(
        self,
        tip: CID,
        store: BlockStore,
        resolver: Any,
        did: Optional[str] = None,
        channel: Any = None,
        key: Optional[Wallet] = None,
    ) -> None:
        super().__init__(tip, store, key=key)
        self.resolver = resolver
        self.channel = channel
        self.did = did
        self.updated = EventHook()

    async def id(self) -> Optional[str]:
        if self.did:
            return self.did
        self.did = await super().id()
        return self.did

    async def _attempt_local(self, root: CID, path: str, want_provenance: bool) -> LocalAttempt:
        try:
            result = await super().resolve_at(root, path, want_provenance)
        except NodeNotFound as exc:
            return LocalAttempt(state=ResolveState.REMOTE_FALLBACK, missing=exc)
        return LocalAttempt(state=ResolveState.LOCAL, result=result)

    async def resolve_at(self, root: CID, path: str, want_provenance: bool = False) -> ResolveResult:
        attempt = await self._attempt_local(root, path, want_provenance)
        if attempt.state is ResolveState.LOCAL:
            return attempt.result
        logger.debug("%s not found locally (%s), going to remote", path, attempt.missing.cid)
        return await self._resolve_remote(path, want_provenance)

    async def _resolve_remote(self, path: str, want_provenance: bool) -> ResolveResult:
        did = self.did
        if not did:
            raise NotFoundError(path, split_path(path))
        remote: RemoteResolveResult = await self.resolver.resolve(did, path, True)
        # merged nodes stay even if the caller discards the result
        await self.store.put_many(remote.touched_nodes)
        return ResolveResult(
            remainder_path=list(remote.remainder_path),
            value=remote.value if not remote.remainder_path else None,
            touched_nodes=[n.cid for n in remote.touched_nodes] if want_provenance else None,
        )

    async def subscribe(self) -> Subscription:
        if self.channel is None:
            raise RuntimeError("no notification channel configured")
        did = await self.id()
        return self.channel.subscribe(topic_for(did), self._on_notification)

    async def _on_notification(self, msg: dict) -> None:
        height = int(msg.get("height", -1))
        new_tip = CID.decode(msg["newTip"])
        if height < await self.height():
            logger.debug("ignoring stale notification at height %d", height)
            return

        did = await self.id()
        for path in ("/", CHAIN_END_PATH):
            remote = await self.resolver.resolve(did, path, True)
            await self.store.put_many(remote.touched_nodes)

        # a newer tip may have been applied or notified while fetching
        if not await self.set_tip(new_tip, height):
            logger.debug("dropping notification at height %d, tip already newer", height)
            return
        logger.info("%s updated to %s (height %d)", did, new_tip, height)
        await self.updated.fire({"did": did, "height": height, "newTip": new_tip})
