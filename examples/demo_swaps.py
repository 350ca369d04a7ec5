'''
demonstrate the swaps directory

amm_math
    - exact integer constant-product quoting with the pool's own fee and bps slippage

swap_executor
    - quote_pool_swap(rpc, pool_keys, direction, amount_in, slippage_bps) quotes against live reserves
    - SwapExecutor builds, simulates and sends swap_base_in transactions

quotes/jupiter
    - JupiterClient fetches aggregator quotes for comparison

Nothing here is sent to the network: the swap is only simulated, and only when a
wallet is configured.
'''

from amm_multitool.auto_config.environment import config
from amm_multitool.auto_config.logging_config import setup_logging
from amm_multitool.constants import WSOL_MINT
from amm_multitool.errors import ConfigError
from amm_multitool.pools.pool_decoder import fetch_amm_v4_pool_keys
from amm_multitool.quotes.jupiter import JupiterClient
from amm_multitool.swaps.amm_math import SwapDirection
from amm_multitool.swaps.swap_executor import SwapExecutor, quote_pool_swap
from amm_multitool.utils.output_manager import save_output
from amm_multitool.utils.solana_rpc import get_default_rpc
from amm_multitool.wallet import load_keypair
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from dataclasses import asdict
import logging

logger = logging.getLogger(__name__)

SOL_USDC_POOL = "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
AMOUNT_IN = 10_000_000  # 0.01 SOL


def demo_pool_quote():
    rpc = get_default_rpc()
    keys = fetch_amm_v4_pool_keys(rpc, SOL_USDC_POOL)
    # SOL is the base of this pool
    _, quote = quote_pool_swap(rpc, keys, SwapDirection.BASE_TO_QUOTE, AMOUNT_IN, config.default_slippage_bps)
    save_output({**asdict(quote), "direction": quote.direction.value}, "swaps/quotes", "raydium_sol_usdc.json")
    return quote


def demo_jupiter_quote():
    quote = JupiterClient().get_quote(str(WSOL_MINT), USDC_MINT, AMOUNT_IN)
    save_output(quote.raw, "swaps/quotes", "jupiter_sol_usdc.json")
    return quote


def demo_simulated_swap():
    try:
        keypair = load_keypair()
    except ConfigError as e:
        logger.warning(f"Skipping swap simulation: {e}")
        return
    executor = SwapExecutor(get_default_rpc(), keypair)
    result = executor.swap(SOL_USDC_POOL, SwapDirection.BASE_TO_QUOTE, AMOUNT_IN, simulate_only=True)
    save_output({"success": result.success, "err": result.err, "units": result.units_consumed, "logs": result.logs},
                "swaps/simulations", f"{result.signature}.json")


if __name__ == "__main__":
    setup_logging(file_log_level="DEBUG", console_log_level="WARNING")
    logger.info("Demonstrating swap capabilities")
    with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
        ) as progress:
        task_id = progress.add_task(description="[blue]Running Swap examples...", total=None)
        raydium = demo_pool_quote()
        jupiter = demo_jupiter_quote()
        logger.info(f"Raydium out {raydium.expected_out}, Jupiter out {jupiter.out_amount}")
        demo_simulated_swap()
