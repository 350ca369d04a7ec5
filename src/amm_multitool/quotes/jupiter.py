"""
jupiter.py

Client for the Jupiter swap aggregator HTTP API (quote and swap transaction).
https://dev.jup.ag/docs/swap-api
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from amm_multitool.auto_config.environment import config
from amm_multitool.errors import QuoteError

logger = logging.getLogger(__name__)


@dataclass
class JupiterQuote:
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    other_amount_threshold: int
    slippage_bps: int
    price_impact_pct: float
    route_labels: List[str] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "JupiterQuote":
        try:
            return cls(
                input_mint=data["inputMint"],
                output_mint=data["outputMint"],
                in_amount=int(data["inAmount"]),
                out_amount=int(data["outAmount"]),
                other_amount_threshold=int(data["otherAmountThreshold"]),
                slippage_bps=int(data.get("slippageBps", 0)),
                price_impact_pct=float(data.get("priceImpactPct") or 0),
                route_labels=[
                    step.get("swapInfo", {}).get("label", "unknown")
                    for step in data.get("routePlan", [])
                ],
                raw=data,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise QuoteError(f"Malformed quote response: {e}") from e


class JupiterClient:
    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None, timeout: float = 30):
        self.base_url = (base_url or config.jupiter_api_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def _handle(self, response: requests.Response, what: str) -> Dict[str, Any]:
        try:
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise QuoteError(f"{what} request failed: {e}") from e
        except ValueError as e:
            raise QuoteError(f"{what} returned invalid JSON") from e

        if isinstance(data, dict) and data.get("error"):
            raise QuoteError(f"{what} error: {data['error']}")
        return data

    def get_quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: Optional[int] = None) -> JupiterQuote:
        if amount <= 0:
            raise ValueError("amount must be positive")
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(config.default_slippage_bps if slippage_bps is None else slippage_bps),
        }
        logger.info(f"Requesting Jupiter quote {input_mint} -> {output_mint} for {amount}")
        try:
            response = self.session.get(f"{self.base_url}/quote", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise QuoteError(f"Quote request failed: {e}") from e
        quote = JupiterQuote.from_response(self._handle(response, "Quote"))
        logger.info(f"Jupiter quote: {quote.in_amount} -> {quote.out_amount} via {', '.join(quote.route_labels)}")
        return quote

    def get_swap_transaction(self, quote: JupiterQuote, user_public_key: str, wrap_and_unwrap_sol: bool = True) -> str:
        """Returns the unsigned swap transaction, base64 encoded."""
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": str(user_public_key),
            "wrapAndUnwrapSol": wrap_and_unwrap_sol,
            "dynamicComputeUnitLimit": True,
        }
        try:
            response = self.session.post(f"{self.base_url}/swap", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise QuoteError(f"Swap request failed: {e}") from e
        data = self._handle(response, "Swap")
        if "swapTransaction" not in data:
            raise QuoteError("Swap response did not include a transaction")
        return data["swapTransaction"]
