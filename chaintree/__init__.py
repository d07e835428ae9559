from .security import apply_security_defaults

apply_security_defaults()

__all__ = [
    "crypto",
    "wallet",
    "store",
    "dag",
    "tx",
    "block",
    "tree",
    "pubsub",
    "aggregator",
    "remote",
    "identity",
    "network",
    "server",
    "client",
    "community",
]
