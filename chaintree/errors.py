class ChainTreeError(Exception):
    pass


class FetchError(ChainTreeError):
    """The block store could not produce bytes for a required node."""


class NodeNotFound(FetchError):
    def __init__(self, cid) -> None:
        super().__init__(f"node not found: {cid}")
        self.cid = cid


class ConfigurationError(ChainTreeError):
    pass


class UnsupportedTransaction(ChainTreeError):
    def __init__(self, kind) -> None:
        super().__init__(f"unsupported transaction: {kind!r}")
        self.kind = kind


class NotFoundError(ChainTreeError):
    """Raised by remote-aware resolvers when a path is missing both locally and remotely."""

    def __init__(self, path: str, remainder) -> None:
        super().__init__(f"not found: {path} (remaining {'/'.join(remainder)})")
        self.path = path
        self.remainder = list(remainder)


class RemoteError(ChainTreeError):
    """The remote side answered with an error instead of a result."""
