import base64
import os
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from . import crypto
from .utils import decode, digest_of, encode, now_ts
from .wallet import Wallet

IDENTITY_HEADER = "X-Tupelo-Id"
IDENTITY_TTL = int(os.getenv("CHAINTREE_IDENTITY_TTL", "10"))


# Modelled on a JWT, but signed with the same recoverable secp256k1
# signature as blocks since chain-trees only know owner addresses.
@dataclass
class Identity:
    iss: str
    sub: str
    aud: str = ""
    exp: int = 0
    iat: int = 0

    @staticmethod
    def for_did(did: str, ttl: Optional[int] = None) -> "Identity":
        now = now_ts()
        return Identity(iss=did, sub=did, iat=now, exp=now + (IDENTITY_TTL if ttl is None else ttl))

    def to_obj(self) -> Dict[str, object]:
        return {"Iss": self.iss, "Sub": self.sub, "Aud": self.aud, "Exp": self.exp, "Iat": self.iat}

    def sign(self, wallet: Wallet) -> "SignedIdentity":
        signed = wallet.sign_object(self.to_obj())
        return SignedIdentity(identity=self, signature=signed.signature)


@dataclass
class SignedIdentity:
    identity: Identity
    signature: bytes

    def _digest(self) -> bytes:
        return digest_of(encode(self.identity.to_obj()))

    def address(self) -> str:
        return crypto.recover_address(self._digest(), self.signature)

    def verify(self, owners: Iterable[str], now: Optional[int] = None) -> bool:
        now = now_ts() if now is None else now
        if now > self.identity.exp:
            return False
        try:
            pub = crypto.recover_public_key(self._digest(), self.signature)
        except ValueError:
            return False
        if not crypto.verify_signature(self._digest(), self.signature, pub):
            return False
        addr = crypto.address_from_pubkey(pub).lower()
        return any(addr == o.lower() for o in owners)

    def to_header(self) -> str:
        obj = self.identity.to_obj()
        obj["Signature"] = self.signature
        return base64.b64encode(encode(obj)).decode()

    @staticmethod
    def from_header(text: str) -> Optional["SignedIdentity"]:
        if not text:
            return None
        obj = decode(base64.b64decode(text.encode()))
        identity = Identity(
            iss=str(obj.get("Iss", "")),
            sub=str(obj.get("Sub", "")),
            aud=str(obj.get("Aud", "")),
            exp=int(obj.get("Exp", 0)),
            iat=int(obj.get("Iat", 0)),
        )
        return SignedIdentity(identity=identity, signature=bytes(obj.get("Signature", b"")))
