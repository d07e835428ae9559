import base64
import hashlib
import time
from typing import Any, List

import dag_cbor
from multiformats import CID, multihash


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def encode(value: Any) -> bytes:
    return dag_cbor.encode(value)


def decode(data: bytes) -> Any:
    return dag_cbor.decode(data)


def cid_for(data: bytes) -> CID:
    return CID("base32", 1, "dag-cbor", multihash.digest(data, "sha2-256"))


def digest_of(data: bytes) -> bytes:
    # raw sha2-256 digest, the same bytes carried inside the CID multihash
    return sha256(data)


def split_path(path: str) -> List[str]:
    return [seg for seg in path.split("/") if seg]


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def unb64(text: str) -> bytes:
    return base64.b64decode(text.encode())


def now_ts() -> int:
    return int(time.time())
