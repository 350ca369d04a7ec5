"""
errors.py

Exception hierarchy shared by the RPC, pool, swap and quote modules.
"""

from typing import Any, List, Optional


class AmmToolError(Exception):
    """Base class for every error raised by amm_multitool."""


class ConfigError(AmmToolError):
    pass


class RpcError(AmmToolError):
    """
    A JSON-RPC error object returned by the node.

    Preflight failures from sendTransaction carry the simulation logs in
    error.data.logs; they are lifted onto `logs` so callers can print them.
    """

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        self.logs: List[str] = []
        if isinstance(data, dict) and isinstance(data.get("logs"), list):
            self.logs = data["logs"]
        super().__init__(f"RPC error {code}: {message}")


class AccountNotFoundError(AmmToolError):
    def __init__(self, address: str, what: str = "Account"):
        self.address = address
        super().__init__(f"{what} not found: {address}")


class PoolDecodeError(AmmToolError):
    pass


class TransactionFailedError(AmmToolError):
    def __init__(self, message: str, signature: Optional[str] = None, err: Any = None, logs: Optional[List[str]] = None):
        self.signature = signature
        self.err = err
        self.logs = logs or []
        super().__init__(message)


class ConfirmationTimeoutError(AmmToolError):
    def __init__(self, signature: str, timeout: float):
        self.signature = signature
        self.timeout = timeout
        super().__init__(f"Transaction {signature} not confirmed within {timeout:.0f}s")


class QuoteError(AmmToolError):
    pass


class InvalidSwapRequestError(AmmToolError):
    """Amount or slippage outside what a swap_base_in instruction can carry."""
