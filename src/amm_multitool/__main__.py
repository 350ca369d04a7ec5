"""
amm_multitool command line.

Usage:
    python -m amm_multitool inspect-tx <signature> [--save]
    python -m amm_multitool decode-pool <pool_address> [--save]
    python -m amm_multitool probe <address> [<address> ...]
    python -m amm_multitool find-pools <mint> [--quote <mint>]
    python -m amm_multitool scan-pool <pool_address> <start_slot> <end_slot>
    python -m amm_multitool quote <pool_address> <amount> --direction {buy,sell}
    python -m amm_multitool jupiter-quote <input_mint> <output_mint> <amount>
    python -m amm_multitool swap <pool_address> <amount> --direction {buy,sell} [--simulate]
    python -m amm_multitool balance [<pubkey>]
    python -m amm_multitool config

Amounts for quote and swap are in UI units of the input token; jupiter-quote
takes raw base units.
"""

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.prompt import Confirm
from rich.table import Table

from amm_multitool.auto_config.environment import config
from amm_multitool.auto_config.logging_config import setup_logging
from amm_multitool.constants import LAMPORTS_PER_SOL
from amm_multitool.errors import AmmToolError
from amm_multitool.pools.pool_decoder import fetch_amm_v4_pool_keys, pool_summary
from amm_multitool.pools.pool_probe import find_pools_by_mint, find_recent_pool_transactions, probe_pool_candidates
from amm_multitool.quotes.jupiter import JupiterClient
from amm_multitool.swaps.amm_math import SwapDirection
from amm_multitool.swaps.swap_executor import SwapExecutor, quote_pool_swap, swap_mints
from amm_multitool.txs.tx_inspector import inspect_transaction, render_report
from amm_multitool.utils.output_manager import save_output
from amm_multitool.utils.solana_rpc import SolanaRpc, get_account_keys
from amm_multitool.wallet import load_keypair

logger = logging.getLogger(__name__)
console = Console()

DIRECTIONS = {"buy": SwapDirection.QUOTE_TO_BASE, "sell": SwapDirection.BASE_TO_QUOTE}


def to_raw_amount(amount: str, decimals: int) -> int:
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}") from None
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount}")
    if value <= 0:
        raise ValueError("Amount must be positive")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
    return int(scaled)


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


def spinner(description: str) -> Progress:
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    progress.add_task(description=f"[blue]{description}", total=None)
    return progress


def key_value_table(title: str, rows: dict) -> Table:
    table = Table(title=title, show_header=False)
    for key, value in rows.items():
        table.add_row(str(key), str(value))
    return table


def cmd_config(args, rpc: SolanaRpc) -> int:
    console.print(key_value_table("AMM Multitool Configuration", config.summary()))
    if config.is_public_rpc():
        console.print("[yellow]Using public Solana RPC. Consider a dedicated RPC provider for better performance.[/yellow]")
    return 0


def cmd_inspect_tx(args, rpc: SolanaRpc) -> int:
    with spinner(f"Fetching {args.signature}..."):
        report = inspect_transaction(rpc, args.signature)
    render_report(report, console)
    if args.save:
        console.print(f"Saved to {save_output(report.to_dict(), 'txs', f'{report.signature}.json')}")
    return 0


def cmd_decode_pool(args, rpc: SolanaRpc) -> int:
    with spinner(f"Fetching pool {args.pool}..."):
        pool_keys = fetch_amm_v4_pool_keys(rpc, args.pool, config.network)
    summary = pool_summary(pool_keys.state, args.pool)
    summary["market_authority"] = str(pool_keys.market_authority)
    summary["market_bids"] = str(pool_keys.bids)
    summary["market_asks"] = str(pool_keys.asks)
    summary["market_event_queue"] = str(pool_keys.event_queue)
    console.print(key_value_table(f"AMM v4 Pool {args.pool}", summary))
    if args.save:
        console.print(f"Saved to {save_output(summary, 'pools', f'{args.pool}.json')}")
    return 0


def cmd_probe(args, rpc: SolanaRpc) -> int:
    with spinner(f"Probing {len(args.addresses)} addresses..."):
        results = probe_pool_candidates(rpc, args.addresses, config.network)

    table = Table(title="Pool Candidates")
    for column in ("Address", "Exists", "Owner", "Size", "AMM v4", "Base Mint", "Quote Mint", "Error"):
        table.add_column(column)
    for result in results:
        table.add_row(
            result.address,
            "yes" if result.exists else "no",
            result.owner or "",
            str(result.data_len),
            "[green]yes[/green]" if result.is_amm_v4 else "no",
            result.base_mint or "",
            result.quote_mint or "",
            result.error or "",
        )
    console.print(table)
    return 0


def cmd_find_pools(args, rpc: SolanaRpc) -> int:
    with spinner(f"Searching pools for {args.mint}..."):
        pools = find_pools_by_mint(rpc, args.mint, args.quote, config.network)

    table = Table(title=f"AMM v4 pools for {args.mint}")
    for column in ("Pool", "Base Mint", "Quote Mint", "Status", "Open Time"):
        table.add_column(column)
    for address, state in pools.items():
        table.add_row(address, str(state.base_mint), str(state.quote_mint), str(state.status), str(state.pool_open_time))
    console.print(table)
    return 0


def cmd_scan_pool(args, rpc: SolanaRpc) -> int:
    found = 0
    with spinner(f"Scanning slots {args.start_slot}-{args.end_slot}..."):
        for tx in find_recent_pool_transactions(rpc, args.pool, args.start_slot, args.end_slot):
            found += 1
            signature = tx["transaction"]["signatures"][0]
            console.print(f"slot {tx['slot']}: {signature} ({len(get_account_keys(tx))} accounts)")
            if args.save:
                save_output(tx, f"pools/{args.pool}/txs", f"{signature}.json")
    console.print(f"Found {found} transactions touching {args.pool}")
    return 0


def cmd_quote(args, rpc: SolanaRpc) -> int:
    direction = DIRECTIONS[args.direction]
    slippage = config.default_slippage_bps if args.slippage_bps is None else args.slippage_bps
    with spinner(f"Quoting {args.direction} on {args.pool}..."):
        pool_keys = fetch_amm_v4_pool_keys(rpc, args.pool, config.network)
        in_decimals, out_decimals = (
            (pool_keys.base_decimals, pool_keys.quote_decimals)
            if direction is SwapDirection.BASE_TO_QUOTE
            else (pool_keys.quote_decimals, pool_keys.base_decimals)
        )
        reserves, swap_quote = quote_pool_swap(rpc, pool_keys, direction, to_raw_amount(args.amount, in_decimals), slippage)

    mint_in, mint_out = swap_mints(pool_keys, direction)
    console.print(key_value_table(f"Quote: {args.direction} on {args.pool}", {
        "Input": f"{from_raw_amount(swap_quote.amount_in, in_decimals)} {mint_in}",
        "Expected Output": f"{from_raw_amount(swap_quote.expected_out, out_decimals)} {mint_out}",
        "Minimum Output": f"{from_raw_amount(swap_quote.min_out, out_decimals)} ({slippage} bps slippage)",
        "Fee": str(from_raw_amount(swap_quote.fee_amount, in_decimals)),
        "Price Impact": f"{Decimal(swap_quote.price_impact_bps) / 100}%",
        "Pool Price": f"{reserves.price} quote/base",
    }))
    return 0


def cmd_jupiter_quote(args, rpc: SolanaRpc) -> int:
    client = JupiterClient()
    with spinner("Requesting Jupiter quote..."):
        quote = client.get_quote(args.input_mint, args.output_mint, args.amount, args.slippage_bps)
    console.print(key_value_table("Jupiter Quote", {
        "In": f"{quote.in_amount} {quote.input_mint}",
        "Out": f"{quote.out_amount} {quote.output_mint}",
        "Minimum Out": quote.other_amount_threshold,
        "Slippage": f"{quote.slippage_bps} bps",
        "Price Impact": f"{quote.price_impact_pct}%",
        "Route": " -> ".join(quote.route_labels),
    }))
    return 0


def cmd_swap(args, rpc: SolanaRpc) -> int:
    direction = DIRECTIONS[args.direction]
    keypair = load_keypair()
    executor = SwapExecutor(rpc, keypair, network=config.network)

    pool_keys = fetch_amm_v4_pool_keys(rpc, args.pool, config.network)
    in_decimals = pool_keys.base_decimals if direction is SwapDirection.BASE_TO_QUOTE else pool_keys.quote_decimals
    amount_in = to_raw_amount(args.amount, in_decimals)

    if not args.simulate and not args.yes:
        if not Confirm.ask(f"Send a {args.direction} of {args.amount} on {args.pool} from {keypair.pubkey()}?", console=console):
            console.print("Aborted.")
            return 1

    with spinner("Simulating swap..." if args.simulate else "Sending swap..."):
        result = executor.swap(args.pool, direction, amount_in, args.slippage_bps,
                               simulate_only=args.simulate, pool_keys=pool_keys)

    status = "[green]SUCCESS[/green]" if result.success else f"[red]FAILED[/red] {result.err}"
    console.print(f"{'Simulation' if result.simulated else 'Swap'}: {status}")
    if result.signature and not result.simulated:
        console.print(f"Signature: {result.signature}")
    if result.units_consumed is not None:
        console.print(f"Compute units: {result.units_consumed:,}")
    if result.logs and (args.simulate or not result.success):
        console.rule("Logs")
        for line in result.logs:
            console.print(line, markup=False, highlight=False)
    return 0 if result.success else 1


def cmd_balance(args, rpc: SolanaRpc) -> int:
    pubkey = args.pubkey or str(load_keypair().pubkey())
    lamports = rpc.get_balance(pubkey)
    console.print(f"{pubkey}: {Decimal(lamports) / LAMPORTS_PER_SOL} SOL")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="amm_multitool", description="Solana AMM inspection and swap tooling")
    parser.add_argument("--rpc-url", help="Override SOLANA_RPC_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("config", help="Show configuration").set_defaults(func=cmd_config)

    p = sub.add_parser("inspect-tx", help="Summarize a transaction")
    p.add_argument("signature")
    p.add_argument("--save", action="store_true")
    p.set_defaults(func=cmd_inspect_tx)

    p = sub.add_parser("decode-pool", help="Decode a Raydium AMM v4 pool account")
    p.add_argument("pool")
    p.add_argument("--save", action="store_true")
    p.set_defaults(func=cmd_decode_pool)

    p = sub.add_parser("probe", help="Check candidate pool addresses")
    p.add_argument("addresses", nargs="+")
    p.set_defaults(func=cmd_probe)

    p = sub.add_parser("find-pools", help="Find AMM v4 pools by mint")
    p.add_argument("mint")
    p.add_argument("--quote", help="Restrict to pools paired with this mint")
    p.set_defaults(func=cmd_find_pools)

    p = sub.add_parser("scan-pool", help="List transactions touching a pool in a slot range")
    p.add_argument("pool")
    p.add_argument("start_slot", type=int)
    p.add_argument("end_slot", type=int)
    p.add_argument("--save", action="store_true")
    p.set_defaults(func=cmd_scan_pool)

    for name, func, help_text in (
        ("quote", cmd_quote, "Quote a swap against pool reserves"),
        ("swap", cmd_swap, "Swap on a Raydium AMM v4 pool"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("pool")
        p.add_argument("amount", help="Input amount in UI units")
        p.add_argument("--direction", choices=sorted(DIRECTIONS), required=True,
                       help="buy: quote -> base, sell: base -> quote")
        p.add_argument("--slippage-bps", type=int)
        if name == "swap":
            p.add_argument("--simulate", action="store_true", help="Simulate only, do not send")
            p.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
        p.set_defaults(func=func)

    p = sub.add_parser("jupiter-quote", help="Quote a swap through the Jupiter aggregator")
    p.add_argument("input_mint")
    p.add_argument("output_mint")
    p.add_argument("amount", type=int, help="Input amount in base units")
    p.add_argument("--slippage-bps", type=int)
    p.set_defaults(func=cmd_jupiter_quote)

    p = sub.add_parser("balance", help="SOL balance of a wallet")
    p.add_argument("pubkey", nargs="?")
    p.set_defaults(func=cmd_balance)

    return parser


def main(argv: Optional[List[str]] = None, rpc: Optional[SolanaRpc] = None) -> int:
    args = build_parser().parse_args(argv)
    if rpc is None:
        setup_logging(file_log_level="DEBUG", console_log_level=logging.getLevelName(config.log_level))
        rpc = SolanaRpc(url=args.rpc_url) if args.rpc_url else SolanaRpc()

    try:
        return args.func(args, rpc)
    except (AmmToolError, ValueError) as e:
        logger.debug("Command failed", exc_info=True)
        console.print(f"[red]Error:[/red] {e}")
        for line in getattr(e, "logs", None) or []:
            console.print(f"  {line}", markup=False, highlight=False)
        return 1


if __name__ == "__main__":
    sys.exit(main())
