import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from multiformats import CID

from .store import BlockStore
from .utils import split_path

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class ResolveResult:
    remainder_path: List[str] = field(default_factory=list)
    value: Any = None
    touched_nodes: Optional[List[CID]] = None

    @property
    def found(self) -> bool:
        return not self.remainder_path


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, dict):
        return current.get(segment, _MISSING)
    if isinstance(current, list) and segment.isdigit():
        idx = int(segment)
        if idx < len(current):
            return current[idx]
    return _MISSING


class Dag:
    """Path resolution over content-addressed nodes, crossing links transparently."""

    def __init__(self, tip: CID, store: BlockStore) -> None:
        self._tip = tip
        self.store = store

    @property
    def tip(self) -> CID:
        return self._tip

    async def get(self, cid: CID) -> Any:
        node = await self.store.get(cid)
        return node.value()

    async def resolve(self, path: str, want_provenance: bool = False) -> ResolveResult:
        return await self.resolve_at(self.tip, path, want_provenance)

    async def resolve_at(self, root: CID, path: str, want_provenance: bool = False) -> ResolveResult:
        segments = split_path(path)
        touched: List[CID] = [root]
        logger.debug("resolving %s at %s", path, root)
        # a missing root is a fetch error, not a not-found result
        current = await self.get(root)

        for i, segment in enumerate(segments):
            nxt = _step(current, segment)
            if nxt is _MISSING:
                return ResolveResult(
                    remainder_path=segments[i:],
                    value=None,
                    touched_nodes=touched if want_provenance else None,
                )
            while isinstance(nxt, CID):
                touched.append(nxt)
                nxt = await self.get(nxt)
            current = nxt

        return ResolveResult(
            remainder_path=[],
            value=current,
            touched_nodes=touched if want_provenance else None,
        )
