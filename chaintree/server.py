import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

from . import crypto
from .aggregator import LocalAggregator
from .block import AddBlockRequest, AddBlockResponse
from .errors import ChainTreeError
from .identity import IDENTITY_HEADER, SignedIdentity
from .network import MAX_MSG_SIZE, read_message, reply_frame, send_message
from .tree import AUTHENTICATIONS_PATH

logger = logging.getLogger(__name__)

REQUIRE_IDENTITY = os.getenv("CHAINTREE_REQUIRE_IDENTITY", "0") == "1"


class AggregatorServer:
    """Serves resolve / add_block / get_tip for a LocalAggregator over line-delimited JSON."""

    def __init__(
        self,
        aggregator: LocalAggregator,
        host: str = "127.0.0.1",
        port: int = 9011,
        require_identity: Optional[bool] = None,
    ) -> None:
        self.aggregator = aggregator
        self.host = host
        self.port = port
        self.require_identity = REQUIRE_IDENTITY if require_identity is None else require_identity
        self._server: Optional[asyncio.AbstractServer] = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(
            self._handle_incoming, self.host, self.port, limit=MAX_MSG_SIZE
        )
        sock = self._server.sockets[0]
        self.port = sock.getsockname()[1]
        logger.info("aggregator listening on %s:%d", self.host, self.port)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle_incoming(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        try:
            while True:
                try:
                    msg = await read_message(reader)
                except ValueError as exc:
                    logger.warning("bad frame from %s: %s", peer, exc)
                    await send_message(writer, reply_frame(None, error=str(exc)))
                    break
                if msg is None:
                    break
                await send_message(writer, await self._dispatch(msg))
        except ConnectionError:
            logger.debug("connection from %s dropped", peer)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _dispatch(self, msg: Dict[str, Any]) -> Dict[str, Any]:
        req_id = msg.get("id")
        method = msg.get("method")
        params = msg.get("params") or {}
        try:
            if method == "resolve":
                resp = await self.aggregator.resolve(
                    str(params["did"]), str(params.get("path", "/")), bool(params.get("touchedBlocks"))
                )
                return reply_frame(req_id, resp.to_dict())
            if method == "add_block":
                abr = AddBlockRequest.from_dict(params["addBlockRequest"])
                token = (msg.get("headers") or {}).get(IDENTITY_HEADER, "")
                if self.require_identity and not await self._identified(token, abr.did):
                    resp = AddBlockResponse.rejected("unauthorized")
                else:
                    resp = await self.aggregator.add_block(abr)
                return reply_frame(req_id, resp.to_dict())
            if method == "get_tip":
                tip = await self.aggregator.get_tip(str(params["did"]))
                return reply_frame(req_id, str(tip) if tip is not None else None)
        except (KeyError, ValueError, TypeError) as exc:
            return reply_frame(req_id, error=f"bad request: {exc}")
        except ChainTreeError as exc:
            logger.error("error handling %s: %s", method, exc)
            return reply_frame(req_id, error=str(exc))
        return reply_frame(req_id, error=f"unknown method: {method}")

    async def _owners(self, did: str) -> List[str]:
        resp = await self.aggregator.resolve(did, AUTHENTICATIONS_PATH)
        if resp.remainder_path or not isinstance(resp.value, list):
            return [crypto.address_from_did(did)]
        return [crypto.address_from_did(a) if a.startswith(crypto.DID_PREFIX) else a for a in resp.value]

    async def _identified(self, header: str, did: str) -> bool:
        try:
            ident = SignedIdentity.from_header(header)
        except Exception:
            return False
        if ident is None or ident.identity.sub != did:
            return False
        return ident.verify(await self._owners(did))
