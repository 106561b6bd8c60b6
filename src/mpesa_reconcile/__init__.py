"""Reconstruct a reviewed expense ledger from M-Pesa messages and statements."""

__version__ = "0.3.0"
