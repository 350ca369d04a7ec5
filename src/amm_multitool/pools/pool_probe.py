"""
pool_probe.py

Check candidate pool addresses and search the AMM v4 program for pools by mint.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Iterator, List, Optional, Sequence

from solders.pubkey import Pubkey

from amm_multitool.auto_config.environment import get_network
from amm_multitool.constants import AMM_V4_ACCOUNT_SIZE, get_program_ids
from amm_multitool.errors import PoolDecodeError
from amm_multitool.pools.layouts import LIQUIDITY_STATE_LAYOUT_V4, field_offset
from amm_multitool.pools.pool_decoder import AmmV4PoolState, decode_amm_v4_pool
from amm_multitool.utils.solana_rpc import SolanaRpc

logger = logging.getLogger(__name__)

BASE_MINT_OFFSET = field_offset(LIQUIDITY_STATE_LAYOUT_V4, "base_mint")
QUOTE_MINT_OFFSET = field_offset(LIQUIDITY_STATE_LAYOUT_V4, "quote_mint")


@dataclass
class ProbeResult:
    address: str
    exists: bool = False
    owner: Optional[str] = None
    lamports: int = 0
    data_len: int = 0
    is_amm_v4: bool = False
    base_mint: Optional[str] = None
    quote_mint: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def probe_pool_candidates(rpc: SolanaRpc, addresses: Sequence[str], network: Optional[str] = None) -> List[ProbeResult]:
    """
    Report, for each address, whether it exists and whether it is an AMM v4 pool.
    Results keep the input order; malformed addresses are reported, not raised.
    """
    amm_program = str(get_program_ids(network or get_network()).amm_v4)
    results: Dict[int, ProbeResult] = {}
    valid: List[int] = []

    for idx, address in enumerate(addresses):
        try:
            Pubkey.from_string(address)
        except ValueError as e:
            results[idx] = ProbeResult(address=address, error=f"invalid address: {e}")
            continue
        valid.append(idx)

    accounts = rpc.get_multiple_accounts([addresses[idx] for idx in valid]) if valid else []

    for idx, info in zip(valid, accounts):
        result = ProbeResult(address=addresses[idx])
        results[idx] = result
        if info is None:
            logger.info(f"{result.address}: not found")
            continue

        result.exists = True
        result.owner = info.owner
        result.lamports = info.lamports
        result.data_len = len(info.data)

        if info.owner != amm_program or len(info.data) != AMM_V4_ACCOUNT_SIZE:
            logger.info(f"{result.address}: exists, owner {info.owner}, {len(info.data)} bytes, not an AMM v4 pool")
            continue

        try:
            state = decode_amm_v4_pool(info.data)
        except PoolDecodeError as e:
            result.error = str(e)
            continue
        result.is_amm_v4 = True
        result.base_mint = str(state.base_mint)
        result.quote_mint = str(state.quote_mint)
        logger.info(f"{result.address}: AMM v4 pool {result.base_mint} / {result.quote_mint}")

    return [results[idx] for idx in range(len(addresses))]


def find_pools_by_mint(
    rpc: SolanaRpc,
    mint: str,
    quote_mint: Optional[str] = None,
    network: Optional[str] = None,
) -> Dict[str, AmmV4PoolState]:
    """
    Find AMM v4 pools holding `mint` on either side, optionally paired with `quote_mint`.

    Returns:
        Mapping of pool address to decoded state, de-duplicated across orientations.
    """
    amm_program = str(get_program_ids(network or get_network()).amm_v4)
    mint_bytes = bytes(Pubkey.from_string(mint))
    other_bytes = bytes(Pubkey.from_string(quote_mint)) if quote_mint else None

    orientations = []
    for mint_offset, other_offset in ((BASE_MINT_OFFSET, QUOTE_MINT_OFFSET), (QUOTE_MINT_OFFSET, BASE_MINT_OFFSET)):
        memcmp = [(mint_offset, mint_bytes)]
        if other_bytes is not None:
            memcmp.append((other_offset, other_bytes))
        orientations.append(memcmp)

    pools: Dict[str, AmmV4PoolState] = {}
    for memcmp in orientations:
        for info in rpc.get_program_accounts(amm_program, data_size=AMM_V4_ACCOUNT_SIZE, memcmp=memcmp):
            if info.address in pools:
                continue
            try:
                pools[info.address] = decode_amm_v4_pool(info.data)
            except PoolDecodeError as e:
                logger.warning(f"Skipping {info.address}: {e}")

    logger.info(f"Found {len(pools)} AMM v4 pools for mint {mint}")
    return pools


def find_recent_pool_transactions(rpc: SolanaRpc, pool_address: str, start_slot: int, end_slot: int) -> Iterator[dict]:
    """Successful transactions in the slot interval that reference the pool, in completion order."""
    logger.info(f"Scanning slots {start_slot} to {end_slot} for pool {pool_address}")
    yield from rpc.get_txs_with_account_in_interval(pool_address, start_slot, end_slot)
