"""Scrow - client-side sync and transaction orchestration for an escrow swap ledger."""

__version__ = "0.1.0"
