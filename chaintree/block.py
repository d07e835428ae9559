from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from multiformats import CID

from .store import Node
from .tx import TransactionRecord
from .utils import b64, decode, encode, unb64

KEY_TYPE_SECP256K1 = 0


@dataclass
class SignatureRecord:
    signature: bytes
    public_key: bytes = b""
    key_type: int = KEY_TYPE_SECP256K1
    conditions: str = ""

    def to_obj(self) -> Dict[str, object]:
        return {
            "ownership": {
                "publicKey": {"type": self.key_type, "publicKey": self.public_key},
                "conditions": self.conditions,
            },
            "signature": self.signature,
        }

    @staticmethod
    def from_obj(data: Dict[str, Any]) -> "SignatureRecord":
        ownership = data.get("ownership") or {}
        pub = ownership.get("publicKey") or {}
        return SignatureRecord(
            signature=bytes(data.get("signature") or b""),
            public_key=bytes(pub.get("publicKey") or b""),
            key_type=int(pub.get("type") or KEY_TYPE_SECP256K1),
            conditions=str(ownership.get("conditions") or ""),
        )


@dataclass
class Block:
    height: int
    transactions: List[TransactionRecord] = field(default_factory=list)
    previous_tip: Optional[CID] = None
    previous_block: Optional[CID] = None
    signatures: Dict[str, SignatureRecord] = field(default_factory=dict)

    def payload_obj(self) -> Dict[str, object]:
        """The signed portion: everything except headers."""
        data: Dict[str, object] = {
            "height": self.height,
            "transactions": [t.to_obj() for t in self.transactions],
        }
        if self.previous_tip is not None:
            data["previousTip"] = self.previous_tip
        if self.previous_block is not None:
            data["previousBlock"] = self.previous_block
        return data

    def to_obj(self) -> Dict[str, object]:
        data = self.payload_obj()
        data["headers"] = {
            "signatures": {addr: sig.to_obj() for addr, sig in self.signatures.items()},
        }
        return data

    def encode(self) -> bytes:
        return encode(self.to_obj())

    @staticmethod
    def from_obj(data: Dict[str, Any]) -> "Block":
        headers = data.get("headers") or {}
        sigs = headers.get("signatures") or {}
        return Block(
            height=int(data["height"]),
            transactions=[TransactionRecord.from_obj(t) for t in data.get("transactions", [])],
            previous_tip=data.get("previousTip"),
            previous_block=data.get("previousBlock"),
            signatures={addr: SignatureRecord.from_obj(s) for addr, s in sigs.items()},
        )

    @staticmethod
    def decode(payload: bytes) -> "Block":
        return Block.from_obj(decode(payload))


@dataclass
class AddBlockRequest:
    previous_tip: bytes
    object_id: bytes
    height: int
    payload: bytes
    state: List[bytes] = field(default_factory=list)
    new_tip: bytes = b""

    @property
    def did(self) -> str:
        return self.object_id.decode("utf-8")

    def to_dict(self) -> Dict[str, object]:
        return {
            "previousTip": b64(self.previous_tip),
            "objectId": b64(self.object_id),
            "height": self.height,
            "payload": b64(self.payload),
            "state": [b64(s) for s in self.state],
            "newTip": b64(self.new_tip),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AddBlockRequest":
        return AddBlockRequest(
            previous_tip=unb64(data.get("previousTip", "")),
            object_id=unb64(data["objectId"]),
            height=int(data["height"]),
            payload=unb64(data["payload"]),
            state=[unb64(s) for s in data.get("state", [])],
            new_tip=unb64(data.get("newTip", "")),
        )


@dataclass
class AddBlockResponse:
    valid: bool
    new_tip: Optional[CID] = None
    new_nodes: List[bytes] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @staticmethod
    def rejected(*errors: str) -> "AddBlockResponse":
        return AddBlockResponse(valid=False, errors=list(errors))

    def nodes(self) -> List[Node]:
        return [Node.from_bytes(data) for data in self.new_nodes]

    def to_dict(self) -> Dict[str, object]:
        return {
            "valid": self.valid,
            "newTip": str(self.new_tip) if self.new_tip is not None else None,
            "newBlocks": [b64(n) for n in self.new_nodes],
            "errors": list(self.errors),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AddBlockResponse":
        tip = data.get("newTip")
        return AddBlockResponse(
            valid=bool(data.get("valid", False)),
            new_tip=CID.decode(tip) if tip else None,
            new_nodes=[unb64(n) for n in data.get("newBlocks") or []],
            errors=[str(e) for e in data.get("errors") or []],
        )


@dataclass
class RemoteResolveResult:
    value: Any = None
    remainder_path: List[str] = field(default_factory=list)
    touched_nodes: List[Node] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        # values travel as canonical bytes so links and binary survive the wire
        return {
            "value": b64(encode(self.value)),
            "remainingPath": list(self.remainder_path),
            "touchedBlocks": [
                {"cid": str(n.cid), "data": b64(n.data)} for n in self.touched_nodes
            ],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "RemoteResolveResult":
        raw = data.get("value")
        return RemoteResolveResult(
            value=decode(unb64(raw)) if raw else None,
            remainder_path=[str(p) for p in data.get("remainingPath") or []],
            touched_nodes=[Node.from_bytes(unb64(b["data"])) for b in data.get("touchedBlocks") or []],
        )
