import base64
import logging
import time

import pytest
from solders.compute_budget import set_compute_unit_limit
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.instructions import get_associated_token_address

from amm_multitool.constants import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    COMPUTE_BUDGET_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    WSOL_MINT,
)
from amm_multitool.errors import AmmToolError, InvalidSwapRequestError, RpcError, TransactionFailedError
from amm_multitool.pools.pool_decoder import fetch_amm_v4_pool_keys
from amm_multitool.swaps import swap_executor
from amm_multitool.swaps.amm_math import SwapDirection
from amm_multitool.swaps.swap_executor import SwapExecutor, SwapRequest, quote_pool_swap, swap_mints
from amm_multitool.swaps.swap_instruction import decode_swap_base_in

from conftest import MAINNET, PoolFixture


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def executor(fake_rpc, keypair):
    return SwapExecutor(fake_rpc, keypair, network="mainnet")


def program_ids(instructions):
    return [ix.program_id for ix in instructions]


def test_swap_mints_follow_direction(fake_rpc, token_pool):
    keys = fetch_amm_v4_pool_keys(fake_rpc, str(token_pool.address), "mainnet")
    assert swap_mints(keys, SwapDirection.BASE_TO_QUOTE) == (token_pool.base_mint, WSOL_MINT)
    assert swap_mints(keys, SwapDirection.QUOTE_TO_BASE) == (WSOL_MINT, token_pool.base_mint)


def test_quote_pool_swap_uses_live_reserves(fake_rpc, token_pool):
    keys = fetch_amm_v4_pool_keys(fake_rpc, str(token_pool.address), "mainnet")

    reserves, quote = quote_pool_swap(fake_rpc, keys, SwapDirection.QUOTE_TO_BASE, 1_000_000_000, 100)
    token_pool.set_reserves(2_000_000_000, 50_000_000_000)
    _, deeper = quote_pool_swap(fake_rpc, keys, SwapDirection.QUOTE_TO_BASE, 1_000_000_000, 100)

    assert reserves.quote_reserve == 50_000_000_000
    assert 0 < quote.min_out < quote.expected_out
    assert deeper.expected_out > quote.expected_out


def test_buy_with_sol_wraps_and_closes_wsol(fake_rpc, token_pool, executor, keypair):
    keys = fetch_amm_v4_pool_keys(fake_rpc, str(token_pool.address), "mainnet")
    owner = keypair.pubkey()
    wsol_ata = get_associated_token_address(owner, WSOL_MINT)
    token_ata = get_associated_token_address(owner, token_pool.base_mint)

    instructions = executor.build_swap_instructions(keys, SwapDirection.QUOTE_TO_BASE, 1_000_000, 900)

    assert program_ids(instructions) == [
        COMPUTE_BUDGET_PROGRAM_ID,
        COMPUTE_BUDGET_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        SYSTEM_PROGRAM_ID,
        TOKEN_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        MAINNET.amm_v4,
        TOKEN_PROGRAM_ID,
    ]
    assert instructions[0] == set_compute_unit_limit(200_000)
    assert instructions[3] == transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_ata, lamports=1_000_000))

    swap = instructions[6]
    assert decode_swap_base_in(bytes(swap.data)) == {"amount_in": 1_000_000, "min_amount_out": 900}
    assert swap.accounts[15].pubkey == wsol_ata
    assert swap.accounts[16].pubkey == token_ata
    assert instructions[7].accounts[0].pubkey == wsol_ata


def test_sell_for_sol_unwraps_output(fake_rpc, token_pool, executor, keypair):
    keys = fetch_amm_v4_pool_keys(fake_rpc, str(token_pool.address), "mainnet")
    wsol_ata = get_associated_token_address(keypair.pubkey(), WSOL_MINT)

    instructions = executor.build_swap_instructions(keys, SwapDirection.BASE_TO_QUOTE, 1_000_000, 900)

    assert program_ids(instructions) == [
        COMPUTE_BUDGET_PROGRAM_ID,
        COMPUTE_BUDGET_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        MAINNET.amm_v4,
        TOKEN_PROGRAM_ID,
    ]
    assert instructions[3].accounts[16].pubkey == wsol_ata
    assert instructions[4].accounts[0].pubkey == wsol_ata


def test_token_to_token_swap_has_no_wsol_handling(fake_rpc, spl_pool, executor):
    keys = fetch_amm_v4_pool_keys(fake_rpc, str(spl_pool.address), "mainnet")
    instructions = executor.build_swap_instructions(keys, SwapDirection.BASE_TO_QUOTE, 1_000, 1)
    assert program_ids(instructions) == [
        COMPUTE_BUDGET_PROGRAM_ID,
        COMPUTE_BUDGET_PROGRAM_ID,
        ASSOCIATED_TOKEN_PROGRAM_ID,
        MAINNET.amm_v4,
    ]


def test_simulated_swap_is_not_sent(fake_rpc, token_pool, executor, keypair):
    result = executor.swap(str(token_pool.address), SwapDirection.QUOTE_TO_BASE, 100_000_000, simulate_only=True)

    assert result.success
    assert result.simulated
    assert result.units_consumed == 42_000
    assert result.logs == ["Program log: ok"]
    assert result.quote.min_out > 0
    assert fake_rpc.sent == []

    tx = VersionedTransaction.from_bytes(fake_rpc.simulated[0])
    assert tx.message.account_keys[0] == keypair.pubkey()
    assert len(tx.message.instructions) == 8
    assert result.signature == str(tx.signatures[0])


def test_failed_simulation_is_reported(fake_rpc, token_pool, executor):
    fake_rpc.simulation = {"err": {"InstructionError": [6, {"Custom": 30}]}, "logs": ["exceeds desired slippage"],
                           "unitsConsumed": 30_000}
    result = executor.swap(str(token_pool.address), SwapDirection.QUOTE_TO_BASE, 100_000_000, simulate_only=True)
    assert not result.success
    assert result.err == {"InstructionError": [6, {"Custom": 30}]}


def test_swap_is_sent_and_confirmed(fake_rpc, token_pool, executor):
    result = executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000, slippage_bps=50)

    assert result.success
    assert result.signature == "sig1"
    assert result.quote.slippage_bps == 50
    assert len(fake_rpc.sent) == 1


def test_preflight_failure_raises_with_logs(fake_rpc, token_pool, executor):
    fake_rpc.send_error = RpcError(-32002, "Transaction simulation failed", {"logs": ["Program log: boom"]})
    with pytest.raises(TransactionFailedError) as excinfo:
        executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000)
    assert excinfo.value.logs == ["Program log: boom"]


def test_on_chain_failure_fetches_logs(fake_rpc, token_pool, executor):
    fake_rpc.confirm_status = {"err": {"InstructionError": [6, {"Custom": 30}]}, "confirmationStatus": "confirmed"}
    fake_rpc.transactions["sig1"] = {"meta": {"logMessages": ["Program log: slippage"]}}

    result = executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000)

    assert not result.success
    assert result.signature == "sig1"
    assert result.logs == ["Program log: slippage"]


def test_swap_refuses_zero_minimum_output(fake_rpc, token_pool, executor):
    with pytest.raises(AmmToolError, match="would return nothing"):
        executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 1)
    assert fake_rpc.simulated == [] and fake_rpc.sent == []


def test_swap_warns_before_pool_opens(fake_rpc, executor, caplog):
    pool = PoolFixture(fake_rpc, Pubkey.new_unique(), WSOL_MINT, 1_000_000_000, 50_000_000_000,
                       pool_open_time=int(time.time()) + 3_600)
    with caplog.at_level(logging.WARNING, logger="amm_multitool.swaps.swap_executor"):
        executor.swap(str(pool.address), SwapDirection.QUOTE_TO_BASE, 100_000_000, simulate_only=True)
    assert "does not open for trading" in caplog.text


def test_execute_swaps_continues_after_failure(fake_rpc, token_pool, executor, monkeypatch):
    sleeps = []
    monkeypatch.setattr(swap_executor.time, "sleep", sleeps.append)
    requests = [
        SwapRequest(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 1),
        SwapRequest(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000),
        SwapRequest(str(token_pool.address), SwapDirection.QUOTE_TO_BASE, 100_000_000, slippage_bps=200),
    ]

    results = executor.execute_swaps(requests, delay_seconds=0.25)

    assert [r.success for r in results] == [False, True, True]
    assert "would return nothing" in results[0].err
    assert [r.signature for r in results[1:]] == ["sig1", "sig2"]
    assert sleeps == [0.25, 0.25]


def test_execute_swaps_without_delay(fake_rpc, token_pool, executor, monkeypatch):
    monkeypatch.setattr(swap_executor.time, "sleep", lambda _: pytest.fail("unexpected sleep"))
    results = executor.execute_swaps([SwapRequest(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000)] * 2)
    assert all(r.success for r in results)


def test_sign_aggregator_transaction(executor, keypair):
    message = MessageV0.try_compile(
        keypair.pubkey(),
        [transfer(TransferParams(from_pubkey=keypair.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1))],
        [],
        Hash.default(),
    )
    unsigned = VersionedTransaction.populate(message, [Signature.default()])

    signed = executor.sign_aggregator_transaction(base64.b64encode(bytes(unsigned)).decode())

    assert signed.message == message
    assert signed.signatures[0] != Signature.default()


def test_execute_swaps_records_invalid_requests_and_continues(fake_rpc, token_pool, executor, monkeypatch):
    monkeypatch.setattr(swap_executor.time, "sleep", lambda _: None)
    pool = str(token_pool.address)
    requests = [
        SwapRequest(pool, SwapDirection.BASE_TO_QUOTE, 0),
        SwapRequest(pool, SwapDirection.BASE_TO_QUOTE, 10_000_000, slippage_bps=20_000),
        SwapRequest(pool, SwapDirection.BASE_TO_QUOTE, 2**64),
        SwapRequest(pool, SwapDirection.BASE_TO_QUOTE, 10_000_000),
    ]

    results = executor.execute_swaps(requests, delay_seconds=0)

    assert [r.success for r in results] == [False, False, False, True]
    assert "amount_in must be within" in results[0].err
    assert "slippage_bps must be within" in results[1].err
    assert "amount_in must be within" in results[2].err
    assert results[3].signature == "sig1"
    assert len(fake_rpc.sent) == 1


def test_execute_swaps_records_empty_pool(fake_rpc, token_pool, executor):
    token_pool.set_reserves(0, 0)
    results = executor.execute_swaps([SwapRequest(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000)],
                                     delay_seconds=0)
    assert not results[0].success
    assert fake_rpc.sent == []


@pytest.mark.parametrize("amount_in, slippage_bps", [(0, 100), (-5, 100), (2**64, 100), (1_000, -1), (1_000, 10_001)])
def test_swap_rejects_out_of_range_request(fake_rpc, token_pool, executor, amount_in, slippage_bps):
    with pytest.raises(InvalidSwapRequestError):
        executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, amount_in, slippage_bps)
    assert fake_rpc.simulated == [] and fake_rpc.sent == []


def test_swap_reuses_resolved_pool_keys(fake_rpc, token_pool, executor):
    keys = fetch_amm_v4_pool_keys(fake_rpc, str(token_pool.address), "mainnet")
    # the swap must not need the pool or market accounts again
    del fake_rpc.accounts[str(token_pool.address)]
    del fake_rpc.accounts[str(token_pool.market_id)]

    result = executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000,
                           simulate_only=True, pool_keys=keys)

    assert result.success
    assert result.quote.amount_in == 10_000_000


def test_transport_failure_is_not_reported_as_preflight(fake_rpc, token_pool, executor):
    fake_rpc.send_error = RpcError(None, "sendTransaction failed after 3 attempts: connection reset")
    with pytest.raises(TransactionFailedError, match="^Send failed") as excinfo:
        executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000)
    assert excinfo.value.logs == []


def test_preflight_code_without_logs_is_reported_as_preflight(fake_rpc, token_pool, executor):
    fake_rpc.send_error = RpcError(-32002, "Transaction simulation failed: Blockhash not found")
    with pytest.raises(TransactionFailedError, match="^Preflight failed"):
        executor.swap(str(token_pool.address), SwapDirection.BASE_TO_QUOTE, 10_000_000)
