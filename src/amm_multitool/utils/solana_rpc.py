"""
solana_rpc.py

Thin JSON-RPC client for a Solana node: rate limiting, retries with backoff,
typed account reads, transaction submission/confirmation and block scanning.
"""

import base64
import time
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from itertools import count
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import requests

from amm_multitool.auto_config.environment import get_solana_rpc_url, get_max_requests_per_second
from amm_multitool.errors import ConfirmationTimeoutError, RpcError
from amm_multitool.utils import rate_limiter as net

logger = logging.getLogger(__name__)

COMMITMENT_LEVELS = {"processed": 0, "confirmed": 1, "finalized": 2}

# Node errors for slots that will never have a block
SKIPPED_SLOT_ERROR_CODES = {-32004, -32007, -32009}


@dataclass
class AccountInfo:
    address: str
    lamports: int
    owner: str
    data: bytes
    executable: bool

    @classmethod
    def from_rpc(cls, address: str, value: Dict[str, Any]) -> "AccountInfo":
        raw = value.get("data") or ["", "base64"]
        if isinstance(raw, list):
            data = base64.b64decode(raw[0]) if raw[0] else b""
        else:
            data = base64.b64decode(raw)
        return cls(
            address=address,
            lamports=value.get("lamports", 0),
            owner=value.get("owner", ""),
            data=data,
            executable=value.get("executable", False),
        )


def get_account_keys(tx: Dict[str, Any]) -> List[str]:
    """
    Account keys of a transaction as base58 strings, including addresses loaded
    from lookup tables. Handles both json and jsonParsed encodings.
    """
    message = tx["transaction"]["message"]
    keys = [k["pubkey"] if isinstance(k, dict) else k for k in message.get("accountKeys", [])]
    loaded = (tx.get("meta") or {}).get("loadedAddresses") or {}
    # jsonParsed already merges loaded addresses into accountKeys
    if loaded and not (message.get("accountKeys") and isinstance(message["accountKeys"][0], dict)):
        keys.extend(loaded.get("writable", []))
        keys.extend(loaded.get("readonly", []))
    return keys


class SolanaRpc:
    def __init__(
        self,
        url: Optional[str] = None,
        max_requests_per_second: Optional[int] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
        max_retries: int = 3,
        commitment: str = "confirmed",
    ):
        self.url = url or get_solana_rpc_url()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries
        self.commitment = commitment
        self.rate_limiter = net.RateLimiter(
            max_requests=max_requests_per_second or get_max_requests_per_second(),
            time_window=1.0,
        )
        self._ids = count(1)

    def request(self, method: str, params: Optional[list] = None) -> Any:
        """
        Make a JSON-RPC request with rate limiting and retries.

        429s, HTTP errors and transport failures are retried with exponential
        backoff. A JSON-RPC error object is raised immediately as RpcError.

        Returns:
            The `result` member of the response.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params is not None:
            payload["params"] = params

        last_error: Optional[Exception] = None
        for attempt in range(self.max_retries):
            try:
                self.rate_limiter.acquire()
                response = self.session.post(self.url, json=payload, timeout=self.timeout)

                if response.status_code == 429:
                    logger.warning(f"{method}: rate limited on attempt {attempt + 1}")
                    last_error = RpcError(429, "Too Many Requests")
                    net.exponential_backoff_sleep(attempt)
                    continue

                response.raise_for_status()
                data = response.json()
            except (requests.RequestException, ValueError) as e:
                logger.error(f"{method}: request failed on attempt {attempt + 1}: {e}")
                last_error = e
                if attempt < self.max_retries - 1:
                    net.exponential_backoff_sleep(attempt)
                continue

            if 'error' in data:
                error = data['error']
                logger.error(f"{method}: RPC Error: {error.get('message')}")
                raise RpcError(error.get('code'), error.get('message', 'unknown error'), error.get('data'))

            return data.get('result')

        raise RpcError(None, f"{method} failed after {self.max_retries} attempts: {last_error}")

    # --- cluster state ---

    def get_slot(self) -> int:
        return self.request("getSlot", [{"commitment": self.commitment}])

    def get_block_time(self, slot: int) -> Optional[int]:
        return self.request("getBlockTime", [slot])

    def get_latest_blockhash(self) -> Tuple[str, int]:
        result = self.request("getLatestBlockhash", [{"commitment": self.commitment}])
        value = result["value"]
        return value["blockhash"], value["lastValidBlockHeight"]

    def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return self.request("getMinimumBalanceForRentExemption", [size])

    # --- accounts ---

    def get_balance(self, pubkey: str) -> int:
        """Balance in lamports."""
        return self.request("getBalance", [str(pubkey), {"commitment": self.commitment}])["value"]

    def get_account_info(self, pubkey: str) -> Optional[AccountInfo]:
        result = self.request(
            "getAccountInfo",
            [str(pubkey), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = result["value"] if result else None
        if value is None:
            return None
        return AccountInfo.from_rpc(str(pubkey), value)

    def get_multiple_accounts(self, pubkeys: Sequence[str], batch_size: int = 100) -> List[Optional[AccountInfo]]:
        """Accounts in the same order as `pubkeys`; missing accounts are None."""
        addresses = [str(p) for p in pubkeys]
        accounts: List[Optional[AccountInfo]] = []
        for start in range(0, len(addresses), batch_size):
            batch = addresses[start:start + batch_size]
            result = self.request(
                "getMultipleAccounts",
                [batch, {"encoding": "base64", "commitment": self.commitment}],
            )
            for address, value in zip(batch, result["value"]):
                accounts.append(AccountInfo.from_rpc(address, value) if value else None)
        return accounts

    def get_program_accounts(
        self,
        program_id: str,
        data_size: Optional[int] = None,
        memcmp: Sequence[Tuple[int, bytes]] = (),
    ) -> List[AccountInfo]:
        filters: List[Dict[str, Any]] = []
        if data_size is not None:
            filters.append({"dataSize": data_size})
        for offset, raw in memcmp:
            filters.append({"memcmp": {
                "offset": offset,
                "bytes": base64.b64encode(raw).decode(),
                "encoding": "base64",
            }})
        config: Dict[str, Any] = {"encoding": "base64", "commitment": self.commitment}
        if filters:
            config["filters"] = filters
        result = self.request("getProgramAccounts", [str(program_id), config])
        return [AccountInfo.from_rpc(item["pubkey"], item["account"]) for item in result or []]

    def get_token_account_balance(self, pubkey: str) -> Dict[str, Any]:
        """{'amount': str, 'decimals': int, 'uiAmountString': str}"""
        return self.request("getTokenAccountBalance", [str(pubkey), {"commitment": self.commitment}])["value"]

    def get_token_accounts_by_owner(self, owner: str, mint: str) -> List[Dict[str, Any]]:
        result = self.request(
            "getTokenAccountsByOwner",
            [str(owner), {"mint": str(mint)}, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        return result["value"]

    # --- transactions ---

    def get_transaction(self, signature: str, encoding: str = "jsonParsed") -> Optional[Dict[str, Any]]:
        return self.request(
            "getTransaction",
            [signature, {
                "encoding": encoding,
                "maxSupportedTransactionVersion": 0,
                "commitment": self.commitment,
            }],
        )

    def simulate_transaction(self, tx_bytes: bytes, sig_verify: bool = True) -> Dict[str, Any]:
        """Returns the simulation value: {'err', 'logs', 'unitsConsumed', ...}."""
        result = self.request(
            "simulateTransaction",
            [base64.b64encode(tx_bytes).decode(), {
                "encoding": "base64",
                "sigVerify": sig_verify,
                "commitment": self.commitment,
            }],
        )
        return result["value"]

    def send_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str:
        """Submit a signed transaction; returns its signature. Preflight failures raise RpcError with logs."""
        return self.request(
            "sendTransaction",
            [base64.b64encode(tx_bytes).decode(), {
                "encoding": "base64",
                "skipPreflight": skip_preflight,
                "preflightCommitment": self.commitment,
            }],
        )

    def get_signature_statuses(self, signatures: Sequence[str]) -> List[Optional[Dict[str, Any]]]:
        result = self.request(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": False}],
        )
        return result["value"]

    def confirm_transaction(
        self,
        signature: str,
        commitment: Optional[str] = None,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> Dict[str, Any]:
        """
        Poll getSignatureStatuses until the signature reaches `commitment` or
        carries an error.

        Returns:
            The final status dict; a failed transaction has a non-null 'err'.

        Raises:
            ConfirmationTimeoutError if the deadline passes first.
        """
        target = COMMITMENT_LEVELS[commitment or self.commitment]
        deadline = time.monotonic() + timeout
        while True:
            status = self.get_signature_statuses([signature])[0]
            if status is not None:
                if status.get("err") is not None:
                    return status
                reached = COMMITMENT_LEVELS.get(status.get("confirmationStatus") or "processed", 0)
                if reached >= target:
                    logger.info(f"Transaction {signature} reached {status.get('confirmationStatus')}")
                    return status
            if time.monotonic() >= deadline:
                raise ConfirmationTimeoutError(signature, timeout)
            time.sleep(poll_interval)

    # --- blocks ---

    def get_block(self, slot: int) -> Optional[Dict[str, Any]]:
        """
        Fetch a block by slot. Skipped or unavailable slots return None.
        """
        try:
            block = self.request("getBlock", [slot, {
                "encoding": "json",
                "maxSupportedTransactionVersion": 0,
                "transactionDetails": "full",
                "rewards": False,
                "commitment": "confirmed",
            }])
        except RpcError as e:
            if e.code in SKIPPED_SLOT_ERROR_CODES:
                logger.info(f"Block {slot} not available ({e.message}). Skipping.")
                return None
            raise
        if block is None:
            logger.info(f"Block {slot} not found. Skipping.")
        return block

    def scan_blocks_for_txs(
        self,
        start_slot: int,
        end_slot: int,
        tx_filter: Callable[[Dict[str, Any]], bool] = lambda tx: True,
        max_workers: int = 4,
    ) -> Iterator[Dict[str, Any]]:
        """
        Scan blocks in the given slot interval and yield successful txs matching tx_filter.
        Each yielded tx is annotated with 'slot' and 'blockTime'.
        """
        logger.info(f"Scanning blocks from slot {start_slot} to {end_slot}")

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(self.get_block, slot): slot for slot in range(start_slot, end_slot + 1)}
            for future in as_completed(futures):
                slot = futures[future]
                block = future.result()
                if not block or 'transactions' not in block:
                    continue
                for tx in block['transactions']:
                    if tx.get('meta') and tx['meta'].get('err') is None and tx_filter(tx):
                        tx['slot'] = slot
                        tx['blockTime'] = block.get('blockTime')
                        yield tx

    def get_txs_with_account_in_interval(self, address: str, start_slot: int, end_slot: int) -> Iterator[Dict[str, Any]]:
        def account_filter(tx):
            return address in get_account_keys(tx)
        yield from self.scan_blocks_for_txs(start_slot, end_slot, tx_filter=account_filter)


_default_rpc: Optional[SolanaRpc] = None


def get_default_rpc() -> SolanaRpc:
    """Process-wide client built from the environment configuration."""
    global _default_rpc
    if _default_rpc is None:
        _default_rpc = SolanaRpc()
    return _default_rpc
