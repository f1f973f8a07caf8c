"""HTTP binding of the ledger core (FastAPI)."""

from banker.api.app import create_app, main

__all__ = ["create_app", "main"]
