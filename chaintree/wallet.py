import json
from dataclasses import dataclass
from typing import Any, Dict

from . import crypto
from .utils import digest_of, encode


@dataclass
class SignatureResult:
    digest: bytes
    signature: bytes


@dataclass
class Wallet:
    priv: bytes

    @staticmethod
    def create() -> "Wallet":
        return Wallet(priv=crypto.generate_private_key())

    @staticmethod
    def from_bytes(priv: bytes) -> "Wallet":
        crypto.public_key(priv)
        return Wallet(priv=bytes(priv))

    @property
    def public_key(self) -> bytes:
        return crypto.public_key(self.priv)

    @property
    def address(self) -> str:
        return crypto.address_from_pubkey(self.public_key)

    @property
    def did(self) -> str:
        return crypto.did_from_address(self.address)

    def sign_object(self, value: Any) -> SignatureResult:
        digest = digest_of(encode(value))
        return SignatureResult(digest=digest, signature=crypto.sign_digest(digest, self.priv))

    def to_dict(self) -> Dict[str, object]:
        return {"algo": "secp256k1", "private_key": self.priv.hex()}

    @staticmethod
    def from_dict(data: Dict[str, object]) -> "Wallet":
        algo = str(data.get("algo", "secp256k1"))
        if algo != "secp256k1":
            raise ValueError("Only secp256k1 wallets are supported.")
        return Wallet.from_bytes(bytes.fromhex(str(data["private_key"])))

    def save(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @staticmethod
    def load(path: str) -> "Wallet":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return Wallet.from_dict(data)
