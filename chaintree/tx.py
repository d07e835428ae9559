from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .errors import UnsupportedTransaction
from .utils import decode, encode

SETDATA = 5
SETOWNERSHIP = 6


@dataclass(frozen=True)
class SetData:
    path: str
    value: bytes  # canonically encoded

    def decoded_value(self) -> Any:
        return decode(self.value)


@dataclass(frozen=True)
class SetOwnership:
    authentications: List[str] = field(default_factory=list)


Transaction = Union[SetData, SetOwnership]


def set_data_transaction(path: str, value: Any) -> SetData:
    return SetData(path=path, value=encode(value))


def set_ownership_transaction(addresses: List[str]) -> SetOwnership:
    return SetOwnership(authentications=list(addresses))


@dataclass
class TransactionRecord:
    """Canonical transaction form. Every payload key is always emitted; unset ones as null."""

    type: int
    set_data_payload: Optional[Dict[str, object]] = None
    set_ownership_payload: Optional[Dict[str, object]] = None
    establish_token_payload: Optional[Dict[str, object]] = None
    mint_token_payload: Optional[Dict[str, object]] = None
    send_token_payload: Optional[Dict[str, object]] = None
    receive_token_payload: Optional[Dict[str, object]] = None
    stake_payload: Optional[Dict[str, object]] = None

    def to_obj(self) -> Dict[str, object]:
        return {
            "type": self.type,
            "setDataPayload": self.set_data_payload,
            "setOwnershipPayload": self.set_ownership_payload,
            "establishTokenPayload": self.establish_token_payload,
            "mintTokenPayload": self.mint_token_payload,
            "sendTokenPayload": self.send_token_payload,
            "receiveTokenPayload": self.receive_token_payload,
            "stakePayload": self.stake_payload,
        }

    @staticmethod
    def from_obj(data: Dict[str, object]) -> "TransactionRecord":
        return TransactionRecord(
            type=int(data["type"]),
            set_data_payload=data.get("setDataPayload"),
            set_ownership_payload=data.get("setOwnershipPayload"),
            establish_token_payload=data.get("establishTokenPayload"),
            mint_token_payload=data.get("mintTokenPayload"),
            send_token_payload=data.get("sendTokenPayload"),
            receive_token_payload=data.get("receiveTokenPayload"),
            stake_payload=data.get("stakePayload"),
        )

    def to_transaction(self) -> Transaction:
        if self.type == SETDATA and self.set_data_payload is not None:
            return SetData(
                path=str(self.set_data_payload["path"]),
                value=bytes(self.set_data_payload["value"]),
            )
        if self.type == SETOWNERSHIP and self.set_ownership_payload is not None:
            return SetOwnership(
                authentications=list(self.set_ownership_payload.get("authenticationList") or [])
            )
        raise UnsupportedTransaction(self.type)


def to_record(tx: Transaction) -> TransactionRecord:
    if isinstance(tx, SetData):
        return TransactionRecord(
            type=SETDATA,
            set_data_payload={"path": tx.path, "value": bytes(tx.value)},
        )
    if isinstance(tx, SetOwnership):
        return TransactionRecord(
            type=SETOWNERSHIP,
            set_ownership_payload={"authenticationList": list(tx.authentications)},
        )
    raise UnsupportedTransaction(type(tx).__name__)
