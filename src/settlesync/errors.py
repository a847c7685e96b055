from __future__ import annotations


class SettleSyncError(Exception):
    """Base class for errors raised by settlesync."""


class ConfigError(SettleSyncError):
    """Missing or malformed configuration. Fatal at startup."""


class ChainIdMismatchError(SettleSyncError):
    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Configured network id {expected} does not match RPC chain id {actual}")
        self.expected = expected
        self.actual = actual


class RPCError(SettleSyncError):
    """JSON-RPC error object returned by the provider, or retries exhausted."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        super().__init__(f"{method} RPC error code={code} message={message}")
        self.method = method
        self.code = code


class BisectionDepthError(SettleSyncError):
    def __init__(self, from_block: int, to_block: int, depth: int) -> None:
        super().__init__(f"Range [{from_block}, {to_block}] still failing after {depth} splits")
        self.from_block = from_block
        self.to_block = to_block
        self.depth = depth


class MissingBalanceError(SettleSyncError):
    def __init__(self, address: str, block: int) -> None:
        super().__init__(f"No balance returned for {address} at block {block}")
        self.address = address
        self.block = block
