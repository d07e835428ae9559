from typing import Tuple

try:
    import coincurve
    from Crypto.Hash import keccak
    from cryptography.exceptions import InvalidSignature
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.hazmat.primitives.asymmetric.utils import (
        Prehashed,
        encode_dss_signature,
    )
except Exception as exc:  # pragma: no cover - hard fail when dependency missing
    raise ImportError(
        "cryptography, coincurve and pycryptodome are required. "
        "Install with `python3 -m pip install cryptography coincurve pycryptodome`."
    ) from exc

CURVE = ec.SECP256K1()
# secp256k1 order (for low-s checks)
N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

DID_PREFIX = "did:tupelo:"

# Ethereum-style recovery values as produced by the signing side
V_LOW = 27
V_HIGH = 28

SIGNATURE_SIZE = 65


def keccak256(data: bytes) -> bytes:
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


# -----------------------------
# secp256k1 keys (cryptography)
# -----------------------------


def generate_private_key() -> bytes:
    key = ec.generate_private_key(CURVE)
    return key.private_numbers().private_value.to_bytes(32, "big")


def public_key(priv: bytes) -> bytes:
    """Uncompressed 65-byte public key (0x04 || X || Y)."""
    if len(priv) != 32:
        raise ValueError("private key must be 32 bytes")
    key = ec.derive_private_key(int.from_bytes(priv, "big"), CURVE)
    return key.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )


def address_from_pubkey(pub: bytes) -> str:
    if len(pub) != 65 or pub[0] != 4:
        raise ValueError("expected an uncompressed secp256k1 public key")
    raw = keccak256(pub[1:])[-20:].hex()
    return "0x" + _checksum(raw)


def _checksum(hex_addr: str) -> str:
    # EIP-55 mixed case
    h = keccak256(hex_addr.encode()).hex()
    return "".join(c.upper() if int(h[i], 16) >= 8 else c for i, c in enumerate(hex_addr))


def did_from_address(address: str) -> str:
    return DID_PREFIX + address


def address_from_did(did: str) -> str:
    if not did.startswith(DID_PREFIX):
        raise ValueError(f"not a tupelo did: {did}")
    return did[len(DID_PREFIX):]


# -----------------------------
# Recoverable signatures
# -----------------------------


def normalize_v(v: int) -> int:
    """Map an Ethereum-style recovery value onto the trailing signature byte."""
    if v == V_LOW:
        return 0
    if v == V_HIGH:
        return 1
    raise ValueError(f"unexpected recovery value: {v}")


def ethereum_v(marker: int) -> int:
    if marker == 0:
        return V_LOW
    if marker == 1:
        return V_HIGH
    raise ValueError(f"unexpected recovery marker: {marker}")


def sign_digest_rsv(digest: bytes, priv: bytes) -> Tuple[bytes, bytes, int]:
    if len(digest) != 32:
        raise ValueError("digest must be 32 bytes")
    raw = coincurve.PrivateKey(priv).sign_recoverable(digest, hasher=None)
    return raw[:32], raw[32:64], V_LOW + raw[64]


def sign_digest(digest: bytes, priv: bytes) -> bytes:
    """65-byte r || s || marker signature, marker per normalize_v."""
    r, s, v = sign_digest_rsv(digest, priv)
    return r + s + bytes([normalize_v(v)])


def split_signature(signature: bytes) -> Tuple[int, int, int]:
    if len(signature) != SIGNATURE_SIZE:
        raise ValueError(f"signature must be {SIGNATURE_SIZE} bytes")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:64], "big")
    return r, s, ethereum_v(signature[64])


def recover_public_key(digest: bytes, signature: bytes) -> bytes:
    split_signature(signature)
    pub = coincurve.PublicKey.from_signature_and_message(signature, digest, hasher=None)
    return pub.format(compressed=False)


def recover_address(digest: bytes, signature: bytes) -> str:
    return address_from_pubkey(recover_public_key(digest, signature))


def verify_signature(digest: bytes, signature: bytes, pub: bytes) -> bool:
    try:
        r, s, _ = split_signature(signature)
    except ValueError:
        return False
    if r <= 0 or r >= N or s <= 0 or s > N // 2:
        return False
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(CURVE, pub)
        key.verify(encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(hashes.SHA256())))
        return True
    except (InvalidSignature, ValueError):
        return False
