"""
tx_inspector.py

Summarize a confirmed transaction: status, fee, compute, SOL and token balance
changes, invoked programs and logs.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table

from amm_multitool.constants import LAMPORTS_PER_SOL
from amm_multitool.errors import AccountNotFoundError
from amm_multitool.utils.solana_rpc import SolanaRpc, get_account_keys

logger = logging.getLogger(__name__)


@dataclass
class SolBalanceChange:
    account: str
    pre_lamports: int
    post_lamports: int

    @property
    def delta_lamports(self) -> int:
        return self.post_lamports - self.pre_lamports

    @property
    def delta_sol(self) -> Decimal:
        return Decimal(self.delta_lamports) / LAMPORTS_PER_SOL


@dataclass
class TokenBalanceChange:
    account_index: int
    account: str
    mint: str
    owner: Optional[str]
    decimals: int
    pre_amount: int
    post_amount: int

    @property
    def delta(self) -> int:
        return self.post_amount - self.pre_amount

    @property
    def delta_ui(self) -> Decimal:
        return Decimal(self.delta) / (Decimal(10) ** self.decimals)


@dataclass
class TransactionReport:
    signature: str
    slot: int
    block_time: Optional[int]
    fee_lamports: int
    success: bool
    error: Any
    compute_units: Optional[int]
    account_keys: List[str]
    program_ids: List[str]
    sol_changes: List[SolBalanceChange] = field(default_factory=list)
    token_changes: List[TokenBalanceChange] = field(default_factory=list)
    log_messages: List[str] = field(default_factory=list)

    @property
    def fee_sol(self) -> Decimal:
        return Decimal(self.fee_lamports) / LAMPORTS_PER_SOL

    @property
    def block_datetime(self) -> Optional[datetime]:
        if self.block_time is None:
            return None
        return datetime.fromtimestamp(self.block_time, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["fee_sol"] = str(self.fee_sol)
        for change, raw in zip(self.sol_changes, data["sol_changes"]):
            raw["delta_lamports"] = change.delta_lamports
        for change, raw in zip(self.token_changes, data["token_changes"]):
            raw["delta"] = change.delta
            raw["delta_ui"] = str(change.delta_ui)
        return data


def _program_ids(tx: Dict[str, Any], account_keys: List[str]) -> List[str]:
    """Programs invoked by top-level and inner instructions, in first-seen order."""
    instructions = list(tx["transaction"]["message"].get("instructions", []))
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        instructions.extend(inner.get("instructions", []))

    seen: List[str] = []
    for ix in instructions:
        if "programId" in ix:
            program = ix["programId"]
        elif "programIdIndex" in ix:
            program = account_keys[ix["programIdIndex"]]
        else:
            continue
        if program not in seen:
            seen.append(program)
    return seen


def _sol_changes(meta: Dict[str, Any], account_keys: List[str]) -> List[SolBalanceChange]:
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    changes = []
    for idx, (before, after) in enumerate(zip(pre, post)):
        if before != after:
            changes.append(SolBalanceChange(account=account_keys[idx], pre_lamports=before, post_lamports=after))
    return changes


def _token_changes(meta: Dict[str, Any], account_keys: List[str]) -> List[TokenBalanceChange]:
    """
    Token balance deltas keyed by (account index, mint). A balance present on
    only one side counts as zero on the other.
    """
    def index(balances) -> Dict[Tuple[int, str], Dict[str, Any]]:
        return {(b["accountIndex"], b["mint"]): b for b in balances or []}

    pre = index(meta.get("preTokenBalances"))
    post = index(meta.get("postTokenBalances"))

    changes = []
    for key in sorted(set(pre) | set(post)):
        before = pre.get(key)
        after = post.get(key)
        sample = after or before
        pre_amount = int(before["uiTokenAmount"]["amount"]) if before else 0
        post_amount = int(after["uiTokenAmount"]["amount"]) if after else 0
        if pre_amount == post_amount:
            continue
        account_index, mint = key
        changes.append(TokenBalanceChange(
            account_index=account_index,
            account=account_keys[account_index] if account_index < len(account_keys) else str(account_index),
            mint=mint,
            owner=sample.get("owner"),
            decimals=sample["uiTokenAmount"]["decimals"],
            pre_amount=pre_amount,
            post_amount=post_amount,
        ))
    return changes


def build_report(signature: str, tx: Dict[str, Any]) -> TransactionReport:
    meta = tx.get("meta") or {}
    account_keys = get_account_keys(tx)
    error = meta.get("err")
    return TransactionReport(
        signature=signature,
        slot=tx.get("slot", 0),
        block_time=tx.get("blockTime"),
        fee_lamports=meta.get("fee", 0),
        success=error is None,
        error=error,
        compute_units=meta.get("computeUnitsConsumed"),
        account_keys=account_keys,
        program_ids=_program_ids(tx, account_keys),
        sol_changes=_sol_changes(meta, account_keys),
        token_changes=_token_changes(meta, account_keys),
        log_messages=meta.get("logMessages") or [],
    )


def inspect_transaction(rpc: SolanaRpc, signature: str) -> TransactionReport:
    logger.info(f"Inspecting transaction {signature}")
    tx = rpc.get_transaction(signature)
    if tx is None:
        raise AccountNotFoundError(signature, "Transaction")
    report = build_report(signature, tx)
    logger.info(f"{signature}: slot {report.slot}, {'success' if report.success else 'failed'}")
    return report


def render_report(report: TransactionReport, console: Optional[Console] = None) -> None:
    console = console or Console()

    overview = Table(title=f"Transaction {report.signature}", show_header=False)
    overview.add_row("Slot", str(report.slot))
    overview.add_row("Block Time", report.block_datetime.isoformat() if report.block_datetime else "N/A")
    overview.add_row("Fee", f"{report.fee_sol} SOL")
    overview.add_row("Status", "[green]SUCCESS[/green]" if report.success else f"[red]FAILED[/red] {report.error}")
    overview.add_row("Compute Units", f"{report.compute_units:,}" if report.compute_units is not None else "N/A")
    overview.add_row("Programs", "\n".join(report.program_ids))
    console.print(overview)

    if report.sol_changes:
        sol = Table(title="SOL Balance Changes")
        sol.add_column("Account")
        sol.add_column("Pre (SOL)", justify="right")
        sol.add_column("Post (SOL)", justify="right")
        sol.add_column("Change", justify="right")
        for change in report.sol_changes:
            sol.add_row(
                change.account,
                str(Decimal(change.pre_lamports) / LAMPORTS_PER_SOL),
                str(Decimal(change.post_lamports) / LAMPORTS_PER_SOL),
                f"{change.delta_sol:+}",
            )
        console.print(sol)

    if report.token_changes:
        tokens = Table(title="Token Balance Changes")
        tokens.add_column("Account")
        tokens.add_column("Mint")
        tokens.add_column("Owner")
        tokens.add_column("Change", justify="right")
        for change in report.token_changes:
            tokens.add_row(change.account, change.mint, change.owner or "", f"{change.delta_ui:+}")
        console.print(tokens)

    if report.log_messages:
        console.rule("Logs")
        for line in report.log_messages:
            console.print(line, markup=False, highlight=False)
