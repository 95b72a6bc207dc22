"""
On-chain score reader (web3.py).

The Neynar score contract on Base exposes getScore(uint256 fid) -> uint24,
the user score in micro-units. A zero means the fid has no score published.

Call failures are classified like the HTTP client's:
- contract revert                           -> ScoreUnavailable
- HTTP 429 from the RPC endpoint            -> RateLimited (Retry-After kept)
- other RPC, transport or decoding errors   -> UpstreamUnavailable
"""

from __future__ import annotations

from typing import Any

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from neynar_history.config.settings import (
    DEFAULT_BASE_RPC_URL,
    DEFAULT_REQUEST_TIMEOUT_SEC,
    DEFAULT_SCORE_CONTRACT_ADDRESS,
    Settings,
)
from neynar_history.core.exceptions import RateLimited, ScoreUnavailable, UpstreamUnavailable
from neynar_history.history_logging import get_logger

logger = get_logger(__name__)

SCORE_ABI = [
    {
        "type": "function",
        "name": "getScore",
        "stateMutability": "view",
        "inputs": [{"name": "fid", "type": "uint256"}],
        "outputs": [{"name": "score", "type": "uint24"}],
    }
]


def _status_of(error: BaseException) -> int | None:
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def _retry_after_of(error: BaseException) -> float | None:
    headers = getattr(getattr(error, "response", None), "headers", None) or {}
    try:
        return max(0.0, float(headers.get("Retry-After", "")))
    except (TypeError, ValueError):
        return None


class OnchainScoreClient:
    """Reads getScore(fid) from the score contract. Pass contract= to inject one (tests)."""

    def __init__(
        self,
        rpc_url: str = DEFAULT_BASE_RPC_URL,
        contract_address: str = DEFAULT_SCORE_CONTRACT_ADDRESS,
        *,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        contract: Any = None,
    ) -> None:
        if contract is None:
            w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
            contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=SCORE_ABI)
        self._contract = contract

    @classmethod
    def from_settings(cls, settings: Settings) -> "OnchainScoreClient":
        return cls(
            settings.base_rpc_url,
            settings.score_contract_address,
            timeout=settings.request_timeout_sec,
        )

    def read_score(self, fid: int) -> int:
        """Raw uint24 score for fid (micro-units)."""
        try:
            raw = self._contract.functions.getScore(fid).call()
        except ContractLogicError as e:
            raise ScoreUnavailable(f"Score contract reverted for fid {fid}: {e}") from e
        except (Web3Exception, ValueError, OSError) as e:
            if _status_of(e) == 429:
                retry_after = _retry_after_of(e)
                logger.warning("onchain_rate_limited", fid=fid, retry_after=retry_after)
                raise RateLimited("Base RPC rate limit exceeded", retry_after=retry_after) from e
            logger.warning("onchain_call_failed", fid=fid, error=str(e))
            raise UpstreamUnavailable(f"Score contract call failed: {e}") from e
        return raw
