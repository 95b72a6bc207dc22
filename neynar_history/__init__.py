"""
Neynar History: trust score time series for Farcaster identities.

Observes Neynar user scores, stores them as a deduplicated, bounded per-fid
history, and keeps a bounded set of tracked fids that a periodic sweep
refreshes. Storage is swappable (SQL, Redis, local JSON file).
"""

__version__ = "0.1.0"
