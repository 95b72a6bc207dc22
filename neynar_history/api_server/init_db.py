"""
Create Neynar History storage (SQL tables, JSON document) for the configured backend.

Usage:
    python -m neynar_history.api_server.init_db
"""

from __future__ import annotations

from neynar_history.config import get_settings
from neynar_history.storage import get_backend


def main() -> None:
    settings = get_settings()
    print("Store backend:", settings.store_backend)
    if settings.store_backend == "sql":
        print("DB URL:", settings.database_url.split("@")[-1])
    print("Creating Neynar History storage...")
    backend = get_backend(settings)
    backend.close()
    print("Done.")


if __name__ == "__main__":
    main()
