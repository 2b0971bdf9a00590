"""
Background Jobs for Sarana Care.

This module contains scheduled and background jobs:
- ledger_retention: Weekly pruning of notification ledger rows that can no longer surface
"""

from .ledger_retention import run_ledger_retention_job

__all__ = ["run_ledger_retention_job"]
