import asyncio
import hashlib
import hmac
import json
import os
import time
from typing import Any, Dict, Optional

from .identity import IDENTITY_HEADER

MAX_MSG_SIZE = int(os.getenv("CHAINTREE_MAX_MSG_SIZE", "2000000"))
WIRE_SECRET = os.getenv("CHAINTREE_WIRE_SECRET")
MAX_SKEW = int(os.getenv("CHAINTREE_WIRE_SKEW", "60"))


def _canonical(msg: Dict[str, Any]) -> str:
    return json.dumps(msg, separators=(",", ":"), sort_keys=True)


def _mac(frame: Dict[str, Any]) -> str:
    unsigned = {k: v for k, v in frame.items() if k != "mac"}
    return hmac.new(WIRE_SECRET.encode(), _canonical(unsigned).encode(), hashlib.sha256).hexdigest()


def request_frame(req_id: int, method: str, params: Dict[str, Any], identity: str = "") -> Dict[str, Any]:
    headers = {IDENTITY_HEADER: identity} if identity else {}
    return {"id": req_id, "method": method, "params": params, "headers": headers}


def reply_frame(req_id: Any, result: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    if error is not None:
        return {"id": req_id, "ok": False, "error": error}
    return {"id": req_id, "ok": True, "result": result}


def encode_message(msg: Dict[str, Any]) -> bytes:
    if WIRE_SECRET:
        msg.setdefault("ts", int(time.time()))
        msg["mac"] = _mac(msg)
    data = _canonical(msg).encode()
    if len(data) >= MAX_MSG_SIZE:
        raise ValueError("Message too large")
    return data + b"\n"


async def send_message(writer: asyncio.StreamWriter, msg: Dict[str, Any]) -> None:
    writer.write(encode_message(msg))
    await writer.drain()


async def read_message(reader: asyncio.StreamReader) -> Optional[Dict[str, Any]]:
    try:
        line = await reader.readline()
    except (asyncio.LimitOverrunError, ValueError) as exc:
        raise ValueError("Message too large") from exc
    if not line:
        return None
    msg = json.loads(line.decode())
    if not isinstance(msg, dict):
        raise ValueError("Message must be an object")
    if WIRE_SECRET:
        ts = int(msg.get("ts", 0))
        if abs(int(time.time()) - ts) > MAX_SKEW:
            raise ValueError("Message timestamp out of range")
        if not hmac.compare_digest(str(msg.get("mac", "")), _mac(msg)):
            raise ValueError("Bad message mac")
    return msg
