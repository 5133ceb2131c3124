"""Ledger state, transaction execution, storage and node control operations for a threshold multisig network."""

__version__ = "0.1.0"