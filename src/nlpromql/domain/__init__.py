"""Domain layer - pure data structures with no I/O.

- ``model``: synonym indexes, label catalogs, query history and the
  immutable snapshot bundling them
- ``relevance``: candidate tokens in, relevance and history context out
- ``build_status``: observable state machine for index builds
"""

from nlpromql.domain.build_status import BuildStage, BuildState, BuildStatus, BuildStatusTracker
from nlpromql.domain.errors import (
    BatchDispatchError,
    BuildAlreadyRunningError,
    CandidateValidationError,
    ExternalServiceError,
    IndexBuildError,
    InvalidBuildTransitionError,
    NlPromqlError,
    SerializationError,
)
from nlpromql.domain.model import (
    HistoryTable,
    KnowledgeHolder,
    KnowledgeSnapshot,
    LabelValueCatalog,
    MetricLabelCatalog,
    SynonymIndex,
    ValueSet,
)
from nlpromql.domain.relevance import CandidateTokens, HistoryContext, LabelContext, RelevanceContext


__all__ = [
    "BatchDispatchError",
    "BuildAlreadyRunningError",
    "BuildStage",
    "BuildState",
    "BuildStatus",
    "BuildStatusTracker",
    "CandidateTokens",
    "CandidateValidationError",
    "ExternalServiceError",
    "HistoryContext",
    "HistoryTable",
    "IndexBuildError",
    "InvalidBuildTransitionError",
    "KnowledgeHolder",
    "KnowledgeSnapshot",
    "LabelContext",
    "LabelValueCatalog",
    "MetricLabelCatalog",
    "NlPromqlError",
    "RelevanceContext",
    "SerializationError",
    "SynonymIndex",
    "ValueSet",
]
