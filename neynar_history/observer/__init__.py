"""Score observer: fetch current Neynar user scores and normalize them into Snapshots."""

from neynar_history.observer.neynar_client import NeynarClient
from neynar_history.observer.normalize import extract_raw_score, normalize_micro_score, normalize_score
from neynar_history.observer.observer import OnchainScoreObserver, ScoreObserver
from neynar_history.observer.onchain_client import OnchainScoreClient

__all__ = [
    "NeynarClient",
    "OnchainScoreClient",
    "OnchainScoreObserver",
    "ScoreObserver",
    "extract_raw_score",
    "normalize_micro_score",
    "normalize_score",
]
