"""
swap_executor.py

Build, simulate and submit single-direction Raydium AMM v4 swaps.

A swap transaction carries, in order: compute budget, WSOL wrapping when SOL is
the input, an idempotent ATA for the output mint, swap_base_in, and closing the
WSOL account when SOL is on either side. All of it commits or none of it does.
"""

import base64
import time
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.instructions import (
    CloseAccountParams,
    SyncNativeParams,
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)

from amm_multitool.auto_config.environment import config
from amm_multitool.constants import TOKEN_PROGRAM_ID, WSOL_MINT
from amm_multitool.errors import AmmToolError, InvalidSwapRequestError, RpcError, TransactionFailedError
from amm_multitool.pools.pool_decoder import AmmV4PoolKeys, PoolReserves, fetch_amm_v4_pool_keys, get_pool_reserves
from amm_multitool.swaps.amm_math import BPS_DENOMINATOR, SwapDirection, SwapQuote, quote_swap
from amm_multitool.swaps.swap_instruction import U64_MAX, make_amm_v4_swap_instruction
from amm_multitool.utils.solana_rpc import SolanaRpc

logger = logging.getLogger(__name__)

# sendTransaction error code when preflight simulation rejects the transaction
PREFLIGHT_FAILURE_CODE = -32002


@dataclass
class SimulationResult:
    err: Any
    logs: List[str]
    units_consumed: Optional[int]

    @property
    def success(self) -> bool:
        return self.err is None


@dataclass
class SwapRequest:
    pool_address: str
    direction: SwapDirection
    amount_in: int
    slippage_bps: Optional[int] = None


@dataclass
class SwapResult:
    success: bool
    signature: Optional[str] = None
    err: Any = None
    logs: List[str] = field(default_factory=list)
    quote: Optional[SwapQuote] = None
    simulated: bool = False
    units_consumed: Optional[int] = None


def swap_mints(pool_keys: AmmV4PoolKeys, direction: SwapDirection) -> Tuple[Pubkey, Pubkey]:
    """(input mint, output mint) for the direction."""
    if direction is SwapDirection.BASE_TO_QUOTE:
        return pool_keys.base_mint, pool_keys.quote_mint
    return pool_keys.quote_mint, pool_keys.base_mint


def check_swap_request(amount_in: int, slippage_bps: int) -> None:
    if not 0 < amount_in <= U64_MAX:
        raise InvalidSwapRequestError(f"amount_in must be within 1..{U64_MAX}, got {amount_in}")
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise InvalidSwapRequestError(f"slippage_bps must be within 0..{BPS_DENOMINATOR}, got {slippage_bps}")


def quote_pool_swap(
    rpc: SolanaRpc,
    pool_keys: AmmV4PoolKeys,
    direction: SwapDirection,
    amount_in: int,
    slippage_bps: int,
) -> Tuple[PoolReserves, SwapQuote]:
    """Quote against the pool's current reserves and its own swap fee."""
    reserves = get_pool_reserves(rpc, pool_keys)
    state = pool_keys.state
    swap_quote = quote_swap(
        reserves.base_reserve,
        reserves.quote_reserve,
        amount_in,
        direction,
        slippage_bps,
        fee_numerator=state.swap_fee_numerator,
        fee_denominator=state.swap_fee_denominator,
    )
    logger.info(
        f"Quote {direction.value}: in={swap_quote.amount_in} expected_out={swap_quote.expected_out} "
        f"min_out={swap_quote.min_out} impact={swap_quote.price_impact_bps}bps"
    )
    return reserves, swap_quote


class SwapExecutor:
    def __init__(
        self,
        rpc: SolanaRpc,
        keypair: Keypair,
        network: Optional[str] = None,
        compute_unit_limit: Optional[int] = None,
        compute_unit_price: Optional[int] = None,
    ):
        self.rpc = rpc
        self.keypair = keypair
        self.network = network or config.network
        self.compute_unit_limit = compute_unit_limit if compute_unit_limit is not None else config.compute_unit_limit
        self.compute_unit_price = compute_unit_price if compute_unit_price is not None else config.compute_unit_price

    @property
    def owner(self) -> Pubkey:
        return self.keypair.pubkey()

    def build_swap_instructions(
        self,
        pool_keys: AmmV4PoolKeys,
        direction: SwapDirection,
        amount_in: int,
        min_amount_out: int,
    ) -> List[Instruction]:
        owner = self.owner
        mint_in, mint_out = swap_mints(pool_keys, direction)
        source = get_associated_token_address(owner, mint_in)
        destination = get_associated_token_address(owner, mint_out)

        instructions: List[Instruction] = [
            set_compute_unit_limit(self.compute_unit_limit),
            set_compute_unit_price(self.compute_unit_price),
        ]

        if mint_in == WSOL_MINT:
            instructions.extend([
                create_idempotent_associated_token_account(owner, owner, WSOL_MINT),
                transfer(TransferParams(from_pubkey=owner, to_pubkey=source, lamports=amount_in)),
                sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=source)),
            ])

        instructions.append(create_idempotent_associated_token_account(owner, owner, mint_out))
        instructions.append(make_amm_v4_swap_instruction(
            pool_keys,
            user_source=source,
            user_destination=destination,
            owner=owner,
            amount_in=amount_in,
            min_amount_out=min_amount_out,
        ))

        if WSOL_MINT in (mint_in, mint_out):
            wsol_account = source if mint_in == WSOL_MINT else destination
            instructions.append(close_account(CloseAccountParams(
                program_id=TOKEN_PROGRAM_ID,
                account=wsol_account,
                dest=owner,
                owner=owner,
            )))

        return instructions

    def build_transaction(self, instructions: Sequence[Instruction]) -> VersionedTransaction:
        blockhash, _ = self.rpc.get_latest_blockhash()
        message = MessageV0.try_compile(self.owner, list(instructions), [], Hash.from_string(blockhash))
        return VersionedTransaction(message, [self.keypair])

    def sign_aggregator_transaction(self, encoded_tx: str) -> VersionedTransaction:
        """Re-sign a base64 versioned transaction returned by a swap API."""
        unsigned = VersionedTransaction.from_bytes(base64.b64decode(encoded_tx))
        return VersionedTransaction(unsigned.message, [self.keypair])

    def simulate(self, tx: VersionedTransaction) -> SimulationResult:
        value = self.rpc.simulate_transaction(bytes(tx))
        result = SimulationResult(
            err=value.get("err"),
            logs=value.get("logs") or [],
            units_consumed=value.get("unitsConsumed"),
        )
        if result.success:
            logger.info(f"Simulation succeeded ({result.units_consumed} CU)")
        else:
            logger.error(f"Simulation failed: {result.err}")
        return result

    def send_and_confirm(self, tx: VersionedTransaction, timeout: float = 60.0) -> SwapResult:
        """
        Raises:
            TransactionFailedError: preflight rejected the transaction
            ConfirmationTimeoutError: no confirmation before `timeout`
        """
        try:
            signature = self.rpc.send_transaction(bytes(tx))
        except RpcError as e:
            stage = "Preflight failed" if e.logs or e.code == PREFLIGHT_FAILURE_CODE else "Send failed"
            raise TransactionFailedError(f"{stage}: {e.message}", err=e.data, logs=e.logs) from e

        logger.info(f"Submitted transaction {signature}")
        status = self.rpc.confirm_transaction(signature, timeout=timeout)
        if status.get("err") is None:
            return SwapResult(success=True, signature=signature)

        logger.error(f"Transaction {signature} failed on chain: {status['err']}")
        confirmed = self.rpc.get_transaction(signature)
        logs = ((confirmed or {}).get("meta") or {}).get("logMessages") or []
        return SwapResult(success=False, signature=signature, err=status["err"], logs=logs)

    def swap(
        self,
        pool_address: str,
        direction: SwapDirection,
        amount_in: int,
        slippage_bps: Optional[int] = None,
        simulate_only: bool = False,
        pool_keys: Optional[AmmV4PoolKeys] = None,
    ) -> SwapResult:
        """
        Pass `pool_keys` when the caller already resolved the pool to skip
        fetching the pool and market accounts again.
        """
        slippage = config.default_slippage_bps if slippage_bps is None else slippage_bps
        check_swap_request(amount_in, slippage)
        if pool_keys is None:
            pool_keys = fetch_amm_v4_pool_keys(self.rpc, pool_address, self.network)

        opens_at = pool_keys.state.pool_open_time
        if opens_at and opens_at > time.time():
            logger.warning(f"Pool {pool_address} does not open for trading until {opens_at}")

        _, swap_quote = quote_pool_swap(self.rpc, pool_keys, direction, amount_in, slippage)
        if swap_quote.min_out == 0:
            raise AmmToolError(f"Swap of {amount_in} would return nothing at {slippage} bps slippage")

        instructions = self.build_swap_instructions(pool_keys, direction, amount_in, swap_quote.min_out)
        tx = self.build_transaction(instructions)

        if simulate_only:
            simulation = self.simulate(tx)
            return SwapResult(
                success=simulation.success,
                signature=str(tx.signatures[0]),
                err=simulation.err,
                logs=simulation.logs,
                quote=swap_quote,
                simulated=True,
                units_consumed=simulation.units_consumed,
            )

        result = self.send_and_confirm(tx)
        result.quote = swap_quote
        return result

    def execute_swaps(self, requests: Sequence[SwapRequest], delay_seconds: Optional[float] = None) -> List[SwapResult]:
        """
        Run independent swap requests one after another with a fixed delay between
        them. A failed request is recorded and the remaining requests still run.
        """
        delay = config.swap_delay_seconds if delay_seconds is None else delay_seconds
        results: List[SwapResult] = []

        for idx, request in enumerate(requests):
            logger.info(f"Swap {idx + 1}/{len(requests)}: {request.direction.value} {request.amount_in} on {request.pool_address}")
            try:
                result = self.swap(request.pool_address, request.direction, request.amount_in, request.slippage_bps)
            except (AmmToolError, ValueError) as e:
                logger.error(f"Swap {idx + 1} failed: {e}")
                result = SwapResult(
                    success=False,
                    signature=getattr(e, "signature", None),
                    err=str(e),
                    logs=getattr(e, "logs", []),
                )
            results.append(result)

            if idx < len(requests) - 1 and delay > 0:
                time.sleep(delay)

        return results
