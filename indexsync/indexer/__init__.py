"""
Full reconciliation package for indexsync.

Provides the owner index, diff calculation, the generic reconciler with
its source-of-record interfaces, and the crawl scheduler.
"""

from .owner_index import OwnerIndex
from .delta_calculator import DeltaCalculator, DiffPlan, is_changed
from .sources import EntitySource, SocialGraph, WhitelistEnricher
from .reconciler import EntityKindSpec, Reconciler, ReconcileResult
from .scheduler import CrawlScheduler, SchedulerState, compute_next_run

__all__ = [
    "OwnerIndex",
    "DeltaCalculator",
    "DiffPlan",
    "is_changed",
    "EntitySource",
    "SocialGraph",
    "WhitelistEnricher",
    "EntityKindSpec",
    "Reconciler",
    "ReconcileResult",
    "CrawlScheduler",
    "SchedulerState",
    "compute_next_run"
]
