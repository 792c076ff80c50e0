"""Async helpers shared by the stores and the sync engine."""

from .async_utils import gather_in_batches, run_sync

__all__ = ["gather_in_batches", "run_sync"]
