import os

# Applied with setdefault, so explicit env settings still win.
HARDENED_DEFAULTS = {
    "CHAINTREE_REQUIRE_IDENTITY": "1",
    "CHAINTREE_MAX_MSG_SIZE": "1000000",
    "CHAINTREE_IDENTITY_TTL": "10",
    "CHAINTREE_WIRE_SKEW": "30",
}


def is_hardened() -> bool:
    return os.getenv("CHAINTREE_SECURITY_LEVEL", "").strip().lower() == "hardened"


def apply_security_defaults() -> bool:
    """Fill in hardened env defaults; must run before modules read their settings."""
    if not is_hardened():
        return False
    for key, value in HARDENED_DEFAULTS.items():
        os.environ.setdefault(key, value)
    return True


def enforce_security_requirements() -> None:
    if is_hardened() and not os.getenv("CHAINTREE_WIRE_SECRET"):
        raise RuntimeError("CHAINTREE_SECURITY_LEVEL=hardened requires CHAINTREE_WIRE_SECRET")
