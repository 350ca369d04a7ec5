"""
pool_decoder.py

Decode Raydium AMM v4 pool accounts and resolve every account a swap needs.

Usage:
    rpc = SolanaRpc()
    keys = fetch_amm_v4_pool_keys(rpc, "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2")
    reserves = get_pool_reserves(rpc, keys)
"""

import logging
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Optional

from construct import ConstructError
from solders.pubkey import Pubkey

from amm_multitool.auto_config.environment import get_network
from amm_multitool.constants import (
    AMM_V4_ACCOUNT_SIZE,
    SPL_TOKEN_ACCOUNT_SIZE,
    TOKEN_PROGRAM_ID,
    get_program_ids,
)
from amm_multitool.errors import AccountNotFoundError, PoolDecodeError
from amm_multitool.pools.layouts import (
    LIQUIDITY_STATE_LAYOUT_V4,
    MARKET_STATE_LAYOUT_V3,
    SPL_ACCOUNT_LAYOUT,
)
from amm_multitool.utils.solana_rpc import SolanaRpc

logger = logging.getLogger(__name__)


@dataclass
class AmmV4PoolState:
    status: int
    base_decimals: int
    quote_decimals: int
    trade_fee_numerator: int
    trade_fee_denominator: int
    swap_fee_numerator: int
    swap_fee_denominator: int
    base_need_take_pnl: int
    quote_need_take_pnl: int
    pool_open_time: int
    swap_base_in_amount: int
    swap_quote_out_amount: int
    swap_quote_in_amount: int
    swap_base_out_amount: int
    base_vault: Pubkey
    quote_vault: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    lp_mint: Pubkey
    open_orders: Pubkey
    target_orders: Pubkey
    market_id: Pubkey
    market_program_id: Pubkey
    lp_reserve: int


@dataclass
class MarketStateV3:
    own_address: Pubkey
    vault_signer_nonce: int
    base_mint: Pubkey
    quote_mint: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    event_queue: Pubkey
    bids: Pubkey
    asks: Pubkey


@dataclass
class AmmV4PoolKeys:
    """Every account a Raydium AMM v4 swap instruction references, plus the decoded pool state."""
    amm_id: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    base_decimals: int
    quote_decimals: int
    open_orders: Pubkey
    target_orders: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    market_id: Pubkey
    market_authority: Pubkey
    market_base_vault: Pubkey
    market_quote_vault: Pubkey
    bids: Pubkey
    asks: Pubkey
    event_queue: Pubkey
    ray_authority_v4: Pubkey
    open_book_program: Pubkey
    amm_program: Pubkey
    token_program_id: Pubkey
    state: AmmV4PoolState


@dataclass
class PoolReserves:
    base_reserve: int
    quote_reserve: int
    base_decimals: int
    quote_decimals: int

    @property
    def base_ui(self) -> Decimal:
        return Decimal(self.base_reserve) / (Decimal(10) ** self.base_decimals)

    @property
    def quote_ui(self) -> Decimal:
        return Decimal(self.quote_reserve) / (Decimal(10) ** self.quote_decimals)

    @property
    def price(self) -> Optional[Decimal]:
        """Quote per base, in UI units."""
        if self.base_reserve == 0:
            return None
        return self.quote_ui / self.base_ui


def _pubkey(raw: bytes) -> Pubkey:
    return Pubkey.from_bytes(bytes(raw))


def decode_amm_v4_pool(data: bytes) -> AmmV4PoolState:
    if len(data) != AMM_V4_ACCOUNT_SIZE:
        raise PoolDecodeError(f"AMM v4 pool data must be {AMM_V4_ACCOUNT_SIZE} bytes, got {len(data)}")
    try:
        parsed = LIQUIDITY_STATE_LAYOUT_V4.parse(data)
    except ConstructError as e:
        raise PoolDecodeError(f"Could not parse AMM v4 pool: {e}") from e

    return AmmV4PoolState(
        status=parsed.status,
        base_decimals=parsed.base_decimal,
        quote_decimals=parsed.quote_decimal,
        trade_fee_numerator=parsed.trade_fee_numerator,
        trade_fee_denominator=parsed.trade_fee_denominator,
        swap_fee_numerator=parsed.swap_fee_numerator,
        swap_fee_denominator=parsed.swap_fee_denominator,
        base_need_take_pnl=parsed.base_need_take_pnl,
        quote_need_take_pnl=parsed.quote_need_take_pnl,
        pool_open_time=parsed.pool_open_time,
        swap_base_in_amount=parsed.swap_base_in_amount,
        swap_quote_out_amount=parsed.swap_quote_out_amount,
        swap_quote_in_amount=parsed.swap_quote_in_amount,
        swap_base_out_amount=parsed.swap_base_out_amount,
        base_vault=_pubkey(parsed.base_vault),
        quote_vault=_pubkey(parsed.quote_vault),
        base_mint=_pubkey(parsed.base_mint),
        quote_mint=_pubkey(parsed.quote_mint),
        lp_mint=_pubkey(parsed.lp_mint),
        open_orders=_pubkey(parsed.open_orders),
        target_orders=_pubkey(parsed.target_orders),
        market_id=_pubkey(parsed.market_id),
        market_program_id=_pubkey(parsed.market_program_id),
        lp_reserve=parsed.lp_reserve,
    )


def decode_market_v3(data: bytes) -> MarketStateV3:
    expected = MARKET_STATE_LAYOUT_V3.sizeof()
    if len(data) < expected:
        raise PoolDecodeError(f"Market data must be at least {expected} bytes, got {len(data)}")
    try:
        parsed = MARKET_STATE_LAYOUT_V3.parse(data[:expected])
    except ConstructError as e:
        raise PoolDecodeError(f"Could not parse OpenBook market: {e}") from e

    return MarketStateV3(
        own_address=_pubkey(parsed.own_address),
        vault_signer_nonce=parsed.vault_signer_nonce,
        base_mint=_pubkey(parsed.base_mint),
        quote_mint=_pubkey(parsed.quote_mint),
        base_vault=_pubkey(parsed.base_vault),
        quote_vault=_pubkey(parsed.quote_vault),
        event_queue=_pubkey(parsed.event_queue),
        bids=_pubkey(parsed.bids),
        asks=_pubkey(parsed.asks),
    )


def derive_market_authority(market_id: Pubkey, vault_signer_nonce: int, program_id: Pubkey) -> Pubkey:
    """The market's vault signer: a program address seeded with the market id and its u64 nonce."""
    try:
        return Pubkey.create_program_address(
            [bytes(market_id), vault_signer_nonce.to_bytes(8, "little")],
            program_id,
        )
    except Exception as e:
        # solders raises its own PubkeyError when the seeds land on the curve
        raise PoolDecodeError(f"Invalid vault signer nonce {vault_signer_nonce} for market {market_id}") from e


def fetch_amm_v4_pool_keys(rpc: SolanaRpc, pool_address: str, network: Optional[str] = None) -> AmmV4PoolKeys:
    """
    Read a pool account and its OpenBook market and assemble the swap accounts.

    Raises:
        AccountNotFoundError: the pool or its market does not exist
        PoolDecodeError: the account is not an AMM v4 pool or does not decode
    """
    program_ids = get_program_ids(network or get_network())
    logger.info(f"Fetching AMM v4 pool {pool_address}")

    pool_info = rpc.get_account_info(pool_address)
    if pool_info is None:
        raise AccountNotFoundError(str(pool_address), "Pool")
    if pool_info.owner != str(program_ids.amm_v4):
        raise PoolDecodeError(
            f"{pool_address} is owned by {pool_info.owner}, not the AMM v4 program {program_ids.amm_v4}"
        )

    state = decode_amm_v4_pool(pool_info.data)
    logger.debug(f"Pool {pool_address}: market {state.market_id}, base {state.base_mint}, quote {state.quote_mint}")

    market_info = rpc.get_account_info(str(state.market_id))
    if market_info is None:
        raise AccountNotFoundError(str(state.market_id), "Market")
    market = decode_market_v3(market_info.data)

    return AmmV4PoolKeys(
        amm_id=Pubkey.from_string(str(pool_address)),
        base_mint=state.base_mint,
        quote_mint=state.quote_mint,
        base_decimals=state.base_decimals,
        quote_decimals=state.quote_decimals,
        open_orders=state.open_orders,
        target_orders=state.target_orders,
        base_vault=state.base_vault,
        quote_vault=state.quote_vault,
        market_id=state.market_id,
        market_authority=derive_market_authority(state.market_id, market.vault_signer_nonce, state.market_program_id),
        market_base_vault=market.base_vault,
        market_quote_vault=market.quote_vault,
        bids=market.bids,
        asks=market.asks,
        event_queue=market.event_queue,
        ray_authority_v4=program_ids.amm_authority,
        open_book_program=state.market_program_id,
        amm_program=program_ids.amm_v4,
        token_program_id=TOKEN_PROGRAM_ID,
        state=state,
    )


def get_pool_reserves(rpc: SolanaRpc, pool_keys: AmmV4PoolKeys) -> PoolReserves:
    """
    Tradable reserves: vault balances minus the PnL the pool still owes itself.
    """
    base_info, quote_info = rpc.get_multiple_accounts([str(pool_keys.base_vault), str(pool_keys.quote_vault)])
    for vault, info in ((pool_keys.base_vault, base_info), (pool_keys.quote_vault, quote_info)):
        if info is None:
            raise AccountNotFoundError(str(vault), "Vault")
        if len(info.data) < SPL_TOKEN_ACCOUNT_SIZE:
            raise PoolDecodeError(f"Vault {vault} is not a token account ({len(info.data)} bytes)")

    base_amount = SPL_ACCOUNT_LAYOUT.parse(base_info.data[:SPL_TOKEN_ACCOUNT_SIZE]).amount
    quote_amount = SPL_ACCOUNT_LAYOUT.parse(quote_info.data[:SPL_TOKEN_ACCOUNT_SIZE]).amount

    state = pool_keys.state
    return PoolReserves(
        base_reserve=max(0, base_amount - state.base_need_take_pnl),
        quote_reserve=max(0, quote_amount - state.quote_need_take_pnl),
        base_decimals=pool_keys.base_decimals,
        quote_decimals=pool_keys.quote_decimals,
    )


def pool_summary(state: AmmV4PoolState, address: Optional[str] = None) -> dict:
    """JSON-friendly view of a decoded pool."""
    summary = {}
    for field in fields(state):
        value = getattr(state, field.name)
        summary[field.name] = str(value) if isinstance(value, Pubkey) else value
    if address is not None:
        summary = {"address": str(address), **summary}
    return summary
