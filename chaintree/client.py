import asyncio
import itertools
import logging
from typing import Any, Dict, Optional

from multiformats import CID

from .block import AddBlockRequest, AddBlockResponse, RemoteResolveResult
from .errors import RemoteError
from .identity import Identity
from .network import MAX_MSG_SIZE, read_message, request_frame, send_message
from .wallet import Wallet

logger = logging.getLogger(__name__)


class Client:
    """Remote resolver and block submitter speaking to an AggregatorServer.

    Requests share one connection and are answered in order, so they are
    serialized with a lock.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9011,
        wallet: Optional[Wallet] = None,
        did: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._key = wallet
        self._did = did or (wallet.did if wallet is not None else None)

    def identify(self, did: str, key: Wallet) -> None:
        self._did = did
        self._key = key

    def identity_header(self) -> str:
        if not self._did or self._key is None:
            return ""
        return Identity.for_did(self._did).sign(self._key).to_header()

    async def connect(self) -> None:
        if self._writer is not None:
            return
        self._reader, self._writer = await asyncio.open_connection(
            self.host, self.port, limit=MAX_MSG_SIZE
        )

    async def close(self) -> None:
        if self._writer is None:
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError:
            pass
        self._reader = self._writer = None

    async def __aenter__(self) -> "Client":
        await self.connect()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _call(self, method: str, params: Dict[str, Any]) -> Any:
        async with self._lock:
            await self.connect()
            req_id = next(self._ids)
            await send_message(self._writer, request_frame(req_id, method, params, self.identity_header()))
            reply = await read_message(self._reader)
        if reply is None:
            await self.close()
            raise ConnectionError("aggregator closed the connection")
        if reply.get("id") != req_id:
            raise RemoteError(f"out of order reply: {reply.get('id')} != {req_id}")
        if not reply.get("ok"):
            raise RemoteError(str(reply.get("error")))
        return reply.get("result")

    async def resolve(self, did: str, path: str, want_provenance: bool = False) -> RemoteResolveResult:
        logger.debug("resolve did: %s %s", did, path)
        result = await self._call(
            "resolve", {"did": did, "path": path, "touchedBlocks": want_provenance}
        )
        return RemoteResolveResult.from_dict(result)

    async def add_block(self, abr: AddBlockRequest) -> AddBlockResponse:
        result = await self._call("add_block", {"addBlockRequest": abr.to_dict()})
        return AddBlockResponse.from_dict(result)

    async def get_tip(self, did: str) -> Optional[CID]:
        result = await self._call("get_tip", {"did": did})
        return CID.decode(result) if result else None
