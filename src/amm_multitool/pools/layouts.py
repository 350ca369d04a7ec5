"""
layouts.py

Fixed binary layouts of the accounts read by the pool tools: the Raydium AMM v4
pool state, the OpenBook (Serum v3) market it trades against, and SPL token
accounts (pool vaults).
"""

from construct import (
    Array,
    BitsInteger,
    BitsSwapped,
    BitStruct,
    Bytes,
    BytesInteger,
    Const,
    Flag,
    Int8ul,
    Int32ul,
    Int64ul,
    Padding,
    Struct,
)

PUBKEY = Bytes(32)
U128 = BytesInteger(16, signed=False, swapped=True)

# Raydium liquidity state v4, 752 bytes
LIQUIDITY_STATE_LAYOUT_V4 = Struct(
    "status" / Int64ul,
    "nonce" / Int64ul,
    "max_order" / Int64ul,
    "depth" / Int64ul,
    "base_decimal" / Int64ul,
    "quote_decimal" / Int64ul,
    "state" / Int64ul,
    "reset_flag" / Int64ul,
    "min_size" / Int64ul,
    "vol_max_cut_ratio" / Int64ul,
    "amount_wave_ratio" / Int64ul,
    "base_lot_size" / Int64ul,
    "quote_lot_size" / Int64ul,
    "min_price_multiplier" / Int64ul,
    "max_price_multiplier" / Int64ul,
    "system_decimal_value" / Int64ul,
    # fees
    "min_separate_numerator" / Int64ul,
    "min_separate_denominator" / Int64ul,
    "trade_fee_numerator" / Int64ul,
    "trade_fee_denominator" / Int64ul,
    "pnl_numerator" / Int64ul,
    "pnl_denominator" / Int64ul,
    "swap_fee_numerator" / Int64ul,
    "swap_fee_denominator" / Int64ul,
    # output data
    "base_need_take_pnl" / Int64ul,
    "quote_need_take_pnl" / Int64ul,
    "quote_total_pnl" / Int64ul,
    "base_total_pnl" / Int64ul,
    "pool_open_time" / Int64ul,
    "punish_pc_amount" / Int64ul,
    "punish_coin_amount" / Int64ul,
    "orderbook_to_init_time" / Int64ul,
    "swap_base_in_amount" / U128,
    "swap_quote_out_amount" / U128,
    "swap_base2quote_fee" / Int64ul,
    "swap_quote_in_amount" / U128,
    "swap_base_out_amount" / U128,
    "swap_quote2base_fee" / Int64ul,
    # accounts
    "base_vault" / PUBKEY,
    "quote_vault" / PUBKEY,
    "base_mint" / PUBKEY,
    "quote_mint" / PUBKEY,
    "lp_mint" / PUBKEY,
    "open_orders" / PUBKEY,
    "market_id" / PUBKEY,
    "market_program_id" / PUBKEY,
    "target_orders" / PUBKEY,
    "withdraw_queue" / PUBKEY,
    "lp_vault" / PUBKEY,
    "owner" / PUBKEY,
    "lp_reserve" / Int64ul,
    "padding" / Array(3, Int64ul),
)

ACCOUNT_FLAGS_LAYOUT = BitsSwapped(
    BitStruct(
        "initialized" / Flag,
        "market" / Flag,
        "open_orders" / Flag,
        "request_queue" / Flag,
        "event_queue" / Flag,
        "bids" / Flag,
        "asks" / Flag,
        Const(0, BitsInteger(57)),
    )
)

# OpenBook / Serum v3 market, 388 bytes including the "serum" head and "padding" tail
MARKET_STATE_LAYOUT_V3 = Struct(
    Padding(5),
    "account_flags" / ACCOUNT_FLAGS_LAYOUT,
    "own_address" / PUBKEY,
    "vault_signer_nonce" / Int64ul,
    "base_mint" / PUBKEY,
    "quote_mint" / PUBKEY,
    "base_vault" / PUBKEY,
    "base_deposits_total" / Int64ul,
    "base_fees_accrued" / Int64ul,
    "quote_vault" / PUBKEY,
    "quote_deposits_total" / Int64ul,
    "quote_fees_accrued" / Int64ul,
    "quote_dust_threshold" / Int64ul,
    "request_queue" / PUBKEY,
    "event_queue" / PUBKEY,
    "bids" / PUBKEY,
    "asks" / PUBKEY,
    "base_lot_size" / Int64ul,
    "quote_lot_size" / Int64ul,
    "fee_rate_bps" / Int64ul,
    "referrer_rebate_accrued" / Int64ul,
    Padding(7),
)

# SPL token account, 165 bytes
SPL_ACCOUNT_LAYOUT = Struct(
    "mint" / PUBKEY,
    "owner" / PUBKEY,
    "amount" / Int64ul,
    "delegate_option" / Int32ul,
    "delegate" / PUBKEY,
    "state" / Int8ul,
    "is_native_option" / Int32ul,
    "is_native" / Int64ul,
    "delegated_amount" / Int64ul,
    "close_authority_option" / Int32ul,
    "close_authority" / PUBKEY,
)


def field_offset(layout: Struct, field: str) -> int:
    """Byte offset of a named top-level field within a fixed-size Struct."""
    offset = 0
    for subcon in layout.subcons:
        if subcon.name == field:
            return offset
        offset += subcon.sizeof()
    raise KeyError(f"{field} is not a field of this layout")
