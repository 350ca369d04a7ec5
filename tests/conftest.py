import threading
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests
from solders.pubkey import Pubkey

from amm_multitool.auto_config.environment import config
from amm_multitool.constants import PROGRAM_IDS, WSOL_MINT
from amm_multitool.errors import PoolDecodeError
from amm_multitool.pools.layouts import LIQUIDITY_STATE_LAYOUT_V4, MARKET_STATE_LAYOUT_V3, SPL_ACCOUNT_LAYOUT
from amm_multitool.pools.pool_decoder import derive_market_authority
from amm_multitool.utils import rate_limiter
from amm_multitool.utils.solana_rpc import AccountInfo

MAINNET = PROGRAM_IDS["mainnet"]


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    """
    Stands in for requests.Session. Either replays queued responses in order or
    routes every call through `handler(method, url, kwargs)`.
    """

    def __init__(self, responses: Optional[List[Any]] = None, handler: Optional[Callable] = None):
        self.responses = list(responses or [])
        self.handler = handler
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def _respond(self, method: str, url: str, kwargs: Dict[str, Any]):
        with self._lock:
            self.calls.append({"method": method, "url": url, **kwargs})
            if self.handler is not None:
                result = self.handler(method, url, kwargs)
            else:
                result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        if isinstance(result, FakeResponse):
            return result
        return FakeResponse(result)

    def post(self, url, **kwargs):
        return self._respond("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._respond("GET", url, kwargs)

    @property
    def payloads(self) -> List[Dict[str, Any]]:
        return [call["json"] for call in self.calls]


def rpc_result(result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": 1, "result": result}


def rpc_error(code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": 1, "error": error}


def _defaults(layout) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for subcon in layout.subcons:
        if not subcon.name:
            continue
        if subcon.name == "padding":
            values[subcon.name] = [0, 0, 0]
        elif subcon.sizeof() == 32:
            values[subcon.name] = bytes(32)
        else:
            values[subcon.name] = 0
    return values


def build_pool_data(**fields) -> bytes:
    values = _defaults(LIQUIDITY_STATE_LAYOUT_V4)
    values.update({"status": 6, "swap_fee_numerator": 25, "swap_fee_denominator": 10_000,
                   "trade_fee_numerator": 25, "trade_fee_denominator": 10_000})
    for name, value in fields.items():
        values[name] = bytes(value) if isinstance(value, Pubkey) else value
    return LIQUIDITY_STATE_LAYOUT_V4.build(values)


def build_market_data(**fields) -> bytes:
    values = _defaults(MARKET_STATE_LAYOUT_V3)
    values["account_flags"] = {
        "initialized": True, "market": True, "open_orders": False, "request_queue": False,
        "event_queue": False, "bids": False, "asks": False,
    }
    for name, value in fields.items():
        values[name] = bytes(value) if isinstance(value, Pubkey) else value
    return MARKET_STATE_LAYOUT_V3.build(values)


def build_token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    values = _defaults(SPL_ACCOUNT_LAYOUT)
    values.update({"mint": bytes(mint), "owner": bytes(owner), "amount": amount, "state": 1})
    return SPL_ACCOUNT_LAYOUT.build(values)


def valid_vault_nonce(market_id: Pubkey, program_id: Pubkey) -> int:
    for nonce in range(256):
        try:
            derive_market_authority(market_id, nonce, program_id)
        except PoolDecodeError:
            continue
        return nonce
    raise AssertionError("no off-curve nonce found")


class FakeRpc:
    """
    In-memory ledger exposing the SolanaRpc methods the pool, swap and
    inspection code calls.
    """

    def __init__(self):
        self.accounts: Dict[str, AccountInfo] = {}
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.blockhash = "11111111111111111111111111111111"
        self.simulation: Dict[str, Any] = {"err": None, "logs": ["Program log: ok"], "unitsConsumed": 42_000}
        self.send_error: Optional[Exception] = None
        self.confirm_status: Dict[str, Any] = {"err": None, "confirmationStatus": "confirmed"}
        self.sent: List[bytes] = []
        self.simulated: List[bytes] = []
        self.balances: Dict[str, int] = {}
        self.program_account_calls: List[Dict[str, Any]] = []
        self.scanned: List[Dict[str, Any]] = []

    def add_account(self, address, data: bytes, owner, lamports: int = 1_000_000) -> None:
        self.accounts[str(address)] = AccountInfo(
            address=str(address), lamports=lamports, owner=str(owner), data=data, executable=False,
        )

    def get_account_info(self, pubkey):
        return self.accounts.get(str(pubkey))

    def get_multiple_accounts(self, pubkeys, batch_size=100):
        return [self.accounts.get(str(p)) for p in pubkeys]

    def get_program_accounts(self, program_id, data_size=None, memcmp=()):
        self.program_account_calls.append({"program_id": str(program_id), "data_size": data_size, "memcmp": list(memcmp)})
        matches = []
        for info in self.accounts.values():
            if info.owner != str(program_id):
                continue
            if data_size is not None and len(info.data) != data_size:
                continue
            if all(info.data[offset:offset + len(raw)] == raw for offset, raw in memcmp):
                matches.append(info)
        return matches

    def get_balance(self, pubkey):
        return self.balances.get(str(pubkey), 0)

    def get_latest_blockhash(self):
        return self.blockhash, 1_000

    def simulate_transaction(self, tx_bytes, sig_verify=True):
        self.simulated.append(tx_bytes)
        return self.simulation

    def send_transaction(self, tx_bytes, skip_preflight=False):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(tx_bytes)
        return f"sig{len(self.sent)}"

    def confirm_transaction(self, signature, commitment=None, timeout=60.0, poll_interval=1.0):
        return self.confirm_status

    def get_transaction(self, signature, encoding="jsonParsed"):
        return self.transactions.get(signature)

    def get_txs_with_account_in_interval(self, address, start_slot, end_slot):
        for tx in self.scanned:
            yield tx


class PoolFixture:
    """A complete synthetic AMM v4 pool with its market and funded vaults."""

    def __init__(self, rpc: FakeRpc, base_mint: Pubkey, quote_mint: Pubkey,
                 base_amount: int, quote_amount: int, base_decimals: int = 6, quote_decimals: int = 9,
                 base_need_take_pnl: int = 0, quote_need_take_pnl: int = 0, pool_open_time: int = 0):
        self.rpc = rpc
        self.address = Pubkey.new_unique()
        self.base_mint = base_mint
        self.quote_mint = quote_mint
        self.base_vault = Pubkey.new_unique()
        self.quote_vault = Pubkey.new_unique()
        self.market_id = Pubkey.new_unique()
        self.open_orders = Pubkey.new_unique()
        self.target_orders = Pubkey.new_unique()
        self.bids = Pubkey.new_unique()
        self.asks = Pubkey.new_unique()
        self.event_queue = Pubkey.new_unique()
        self.market_base_vault = Pubkey.new_unique()
        self.market_quote_vault = Pubkey.new_unique()
        self.vault_nonce = valid_vault_nonce(self.market_id, MAINNET.openbook)
        self.market_authority = derive_market_authority(self.market_id, self.vault_nonce, MAINNET.openbook)

        rpc.add_account(self.address, build_pool_data(
            base_decimal=base_decimals,
            quote_decimal=quote_decimals,
            base_need_take_pnl=base_need_take_pnl,
            quote_need_take_pnl=quote_need_take_pnl,
            pool_open_time=pool_open_time,
            base_vault=self.base_vault,
            quote_vault=self.quote_vault,
            base_mint=base_mint,
            quote_mint=quote_mint,
            lp_mint=Pubkey.new_unique(),
            open_orders=self.open_orders,
            market_id=self.market_id,
            market_program_id=MAINNET.openbook,
            target_orders=self.target_orders,
        ), owner=MAINNET.amm_v4)
        rpc.add_account(self.market_id, build_market_data(
            own_address=self.market_id,
            vault_signer_nonce=self.vault_nonce,
            base_mint=base_mint,
            quote_mint=quote_mint,
            base_vault=self.market_base_vault,
            quote_vault=self.market_quote_vault,
            event_queue=self.event_queue,
            bids=self.bids,
            asks=self.asks,
        ), owner=MAINNET.openbook)
        self.set_reserves(base_amount, quote_amount)

    def set_reserves(self, base_amount: int, quote_amount: int) -> None:
        authority = MAINNET.amm_authority
        self.rpc.add_account(self.base_vault, build_token_account_data(self.base_mint, authority, base_amount),
                             owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
        self.rpc.add_account(self.quote_vault, build_token_account_data(self.quote_mint, authority, quote_amount),
                             owner="TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")


@pytest.fixture(autouse=True)
def mainnet_config(monkeypatch, tmp_path):
    """Pin the process configuration so a local .env cannot leak into tests."""
    monkeypatch.setattr(config, "network", "mainnet")
    monkeypatch.setattr(config, "default_slippage_bps", 100)
    monkeypatch.setattr(config, "compute_unit_limit", 200_000)
    monkeypatch.setattr(config, "compute_unit_price", 100_000)
    monkeypatch.setattr(config, "swap_delay_seconds", 0.0)
    monkeypatch.setattr(config, "private_key", None)
    monkeypatch.setattr(config, "keypair_path", None)
    monkeypatch.setattr(config, "output_dir", tmp_path / "data")


@pytest.fixture
def no_backoff(monkeypatch):
    sleeps = []
    monkeypatch.setattr(rate_limiter, "exponential_backoff_sleep", lambda retries, *a, **k: sleeps.append(retries))
    return sleeps


@pytest.fixture
def fake_rpc():
    return FakeRpc()


@pytest.fixture
def token_pool(fake_rpc):
    """Token / WSOL pool: 1,000 base tokens (6 decimals) against 50 SOL."""
    return PoolFixture(fake_rpc, Pubkey.new_unique(), WSOL_MINT, base_amount=1_000_000_000, quote_amount=50_000_000_000)


@pytest.fixture
def spl_pool(fake_rpc):
    """Pool with no native SOL on either side."""
    return PoolFixture(fake_rpc, Pubkey.new_unique(), Pubkey.new_unique(), base_amount=5_000_000, quote_amount=20_000_000,
                       base_decimals=6, quote_decimals=6)
