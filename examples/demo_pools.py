from amm_multitool.auto_config.environment import config
from amm_multitool.auto_config.logging_config import setup_logging
from amm_multitool.constants import WSOL_MINT
from amm_multitool.pools.pool_decoder import fetch_amm_v4_pool_keys, get_pool_reserves, pool_summary
from amm_multitool.pools.pool_probe import find_pools_by_mint, probe_pool_candidates
from amm_multitool.utils.output_manager import save_output
from amm_multitool.utils.solana_rpc import get_default_rpc
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
import logging

logger = logging.getLogger(__name__)

SOL_USDC_POOL = "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2"  # Raydium AMM v4 SOL-USDC
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


def demo_decode_pool():
    rpc = get_default_rpc()
    keys = fetch_amm_v4_pool_keys(rpc, SOL_USDC_POOL)
    reserves = get_pool_reserves(rpc, keys)
    summary = pool_summary(keys.state, SOL_USDC_POOL)
    summary["price"] = str(reserves.price)
    save_output(summary, "pools/decoded", f"{SOL_USDC_POOL}.json")


def demo_probe():
    candidates = [SOL_USDC_POOL, USDC_MINT, str(WSOL_MINT)]
    results = probe_pool_candidates(get_default_rpc(), candidates)
    save_output([r.to_dict() for r in results], "pools/probe", "candidates.json")


def demo_find_pools():
    """
    getProgramAccounts over the AMM v4 program is heavy; public RPCs usually refuse it.
    """
    if config.is_public_rpc():
        logger.warning("Skipping pool search on a public RPC")
        return
    pools = find_pools_by_mint(get_default_rpc(), USDC_MINT, quote_mint=str(WSOL_MINT))
    save_output({address: pool_summary(state) for address, state in pools.items()}, "pools/search", "usdc_sol.json")


if __name__ == "__main__":
    setup_logging(file_log_level="DEBUG", console_log_level="WARNING")
    logger.info("Demonstrating pool capabilities")
    with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
        ) as progress:
        task_id = progress.add_task(description="[blue]Running Pool examples...", total=None)
        demo_decode_pool()
        demo_probe()
        demo_find_pools()
