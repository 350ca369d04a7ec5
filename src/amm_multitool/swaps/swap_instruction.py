import logging
from typing import List

from construct import Int8ul, Int64ul, Struct
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from amm_multitool.constants import SWAP_BASE_IN_DISCRIMINATOR
from amm_multitool.pools.pool_decoder import AmmV4PoolKeys

logger = logging.getLogger(__name__)

U64_MAX = 2**64 - 1

SWAP_BASE_IN_LAYOUT = Struct(
    "instruction" / Int8ul,
    "amount_in" / Int64ul,
    "min_amount_out" / Int64ul,
)


def encode_swap_base_in(amount_in: int, min_amount_out: int) -> bytes:
    for name, value in (("amount_in", amount_in), ("min_amount_out", min_amount_out)):
        if not 0 <= value <= U64_MAX:
            raise ValueError(f"{name} must fit in a u64, got {value}")
    return SWAP_BASE_IN_LAYOUT.build({
        "instruction": SWAP_BASE_IN_DISCRIMINATOR,
        "amount_in": amount_in,
        "min_amount_out": min_amount_out,
    })


def decode_swap_base_in(data: bytes) -> dict:
    if len(data) != SWAP_BASE_IN_LAYOUT.sizeof():
        raise ValueError(f"swap_base_in data must be {SWAP_BASE_IN_LAYOUT.sizeof()} bytes, got {len(data)}")
    parsed = SWAP_BASE_IN_LAYOUT.parse(data)
    if parsed.instruction != SWAP_BASE_IN_DISCRIMINATOR:
        raise ValueError(f"Not a swap_base_in instruction (discriminator {parsed.instruction})")
    return {"amount_in": parsed.amount_in, "min_amount_out": parsed.min_amount_out}


def make_amm_v4_swap_instruction(
    pool_keys: AmmV4PoolKeys,
    user_source: Pubkey,
    user_destination: Pubkey,
    owner: Pubkey,
    amount_in: int,
    min_amount_out: int,
) -> Instruction:
    """
    Raydium AMM v4 swap_base_in. Account order is fixed by the program.
    """
    accounts: List[AccountMeta] = [
        AccountMeta(pubkey=pool_keys.token_program_id, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool_keys.amm_id, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.ray_authority_v4, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool_keys.open_orders, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.target_orders, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.base_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.open_book_program, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool_keys.market_id, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.bids, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.asks, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.event_queue, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.market_base_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.market_quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool_keys.market_authority, is_signer=False, is_writable=False),
        AccountMeta(pubkey=user_source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=user_destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]

    instruction = Instruction(
        program_id=pool_keys.amm_program,
        data=encode_swap_base_in(amount_in, min_amount_out),
        accounts=accounts,
    )
    logger.debug(f"Built swap_base_in for pool {pool_keys.amm_id}: in={amount_in} min_out={min_amount_out}")
    return instruction
