"""Services that build and query the knowledge snapshot."""

from .batch_dispatcher import BatchDispatcher, DispatchOutcome, DispatchPolicy
from .index_builder import IndexBuilder
from .refresh_scheduler import IndexRefreshScheduler
from .relevance_resolver import RelevanceResolver


__all__ = [
    "BatchDispatcher",
    "DispatchOutcome",
    "DispatchPolicy",
    "IndexBuilder",
    "IndexRefreshScheduler",
    "RelevanceResolver",
]
