from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ProviderError
from .retrieval import Evidence, run_scene_search

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUSES = frozenset({403, 429})

NO_RESULTS_MESSAGE = "No video results found for this query."


class OutcomeKind(str, Enum):
    EVIDENCE = "evidence"
    EMPTY = "empty"
    QUOTA_EXHAUSTED = "quota_exhausted"


class FailureKind(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class RetrievalOutcome:
    kind: OutcomeKind
    evidence: Optional[Evidence] = None

    @classmethod
    def found(cls, evidence: Evidence) -> "RetrievalOutcome":
        return cls(OutcomeKind.EVIDENCE, evidence)

    @classmethod
    def empty(cls) -> "RetrievalOutcome":
        return cls(OutcomeKind.EMPTY)

    @classmethod
    def quota_exhausted(cls) -> "RetrievalOutcome":
        return cls(OutcomeKind.QUOTA_EXHAUSTED)

    @property
    def exhausted(self) -> bool:
        return self.kind is OutcomeKind.QUOTA_EXHAUSTED

    def to_tool_payload(self) -> dict:
        """Shape fed back to the model as the tool call's result."""
        if self.kind is OutcomeKind.EVIDENCE and self.evidence is not None:
            return {"status": "found", **self.evidence.to_dict()}
        if self.kind is OutcomeKind.QUOTA_EXHAUSTED:
            return {"status": "unavailable", "message": "Search quota exhausted."}
        return {"status": "no_results", "message": NO_RESULTS_MESSAGE}


def classify_failure(exc: BaseException | None) -> FailureKind:
    if exc is None:
        return FailureKind.SUCCESS
    if isinstance(exc, ProviderError) and exc.status in RATE_LIMIT_STATUSES:
        return FailureKind.RATE_LIMITED
    return FailureKind.TRANSIENT


class QuotaBreaker:
    """Request-scoped guard around the retrieval tool.

    Once the provider reports throttling or an authorization denial the
    breaker stays open for the rest of the request and every later call
    reports ``QUOTA_EXHAUSTED`` without touching the network.
    """

    def __init__(self, retrieve: Callable[[str], Evidence | None] = run_scene_search):
        self._retrieve = retrieve
        self.is_open = False
        self.calls = 0

    def call(self, query: str) -> RetrievalOutcome:
        if self.is_open:
            return RetrievalOutcome.quota_exhausted()

        self.calls += 1
        try:
            evidence = self._retrieve(query)
        except Exception as exc:
            kind = classify_failure(exc)
            if kind is FailureKind.RATE_LIMITED:
                logger.warning("Retrieval provider rate-limited, opening breaker: %s", exc)
                self.is_open = True
                return RetrievalOutcome.quota_exhausted()
            logger.warning("Retrieval failed for %r, degrading to empty: %s", query, exc)
            return RetrievalOutcome.empty()

        if evidence is None:
            return RetrievalOutcome.empty()
        return RetrievalOutcome.found(evidence)
