"""
Persistence seams for pipeline runs.

Two interfaces keep storage out of the orchestrator:

    - ``AnalysisRepository`` stores the analysis outcome and its suggestions.
    - ``StatePersistence`` stores graph state after each stage so a run can
      be inspected or resumed.

Both ship with in-memory implementations used by the CLI and tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from store_insights.models.schemas import (
    Alert,
    AnalysisRecord,
    AnalysisStatus,
    AnalysisSummary,
    ExpectedImpact,
    Opportunity,
    ReviewedSuggestion,
    SuggestionRecord,
    SuggestionStatus,
)
from store_insights.pipeline.suggestion_filters import PENDING_STATUSES
from store_insights.utils.logger import get_logger

logger = get_logger(__name__)

UNTITLED_TITLE = "Untitled suggestion"


def to_suggestion_record(
    suggestion: ReviewedSuggestion,
    analysis_id: str,
    store_id: int,
) -> SuggestionRecord:
    """Map a reviewed suggestion onto persisted suggestion columns."""
    final = suggestion.final_version
    original = suggestion.original or {}

    specific_data = dict(final.specific_data or {})
    for key in ("competitor_reference", "implementation"):
        if original.get(key):
            specific_data.setdefault(key, original[key])
    specific_data["quality_score"] = suggestion.quality_score

    return SuggestionRecord(
        analysis_id=analysis_id,
        store_id=store_id,
        category=final.category or "general",
        title=final.title or UNTITLED_TITLE,
        description=final.description,
        recommended_action=final.recommended_action,
        expected_impact=ExpectedImpact.parse(final.expected_impact, default=ExpectedImpact.MEDIUM),
        priority=suggestion.final_priority,
        status=SuggestionStatus.PENDING,
        target_metrics=final.target_metrics or None,
        specific_data=specific_data,
        data_justification=final.data_justification,
        embedding=suggestion.embedding,
    )


# =============================================================================
# Analysis Repository
# =============================================================================

class AnalysisRepository(ABC):
    """Storage for analysis outcomes and suggestions."""

    @abstractmethod
    async def save_analysis(
        self,
        analysis_id: str,
        store_id: int,
        summary: AnalysisSummary,
        alerts: list[Alert],
        opportunities: list[Opportunity],
    ) -> AnalysisRecord:
        """Mark an analysis completed with its summary."""

    @abstractmethod
    async def save_suggestions(
        self,
        analysis_id: str,
        records: list[SuggestionRecord],
    ) -> list[SuggestionRecord]:
        """
        Replace every suggestion stored for ``analysis_id`` with ``records``.

        Must be atomic: either all records are stored or the previous rows
        remain. Repeating the call with the same records is a no-op.
        """

    @abstractmethod
    async def mark_failed(
        self,
        analysis_id: str,
        store_id: int,
        stage: str,
        error: str,
        details: Optional[dict[str, Any]] = None,
    ) -> AnalysisRecord:
        """Mark an analysis failed with stage diagnostics."""

    @abstractmethod
    async def pending_suggestion_count(self, store_id: int) -> int:
        """Suggestions still awaiting action for a store."""

    @abstractmethod
    async def get_analysis(self, analysis_id: str) -> Optional[AnalysisRecord]:
        ...

    @abstractmethod
    async def get_suggestions(self, analysis_id: str) -> list[SuggestionRecord]:
        ...


class InMemoryAnalysisRepository(AnalysisRepository):
    """In-memory repository for the CLI and testing."""

    def __init__(self):
        self._analyses: dict[str, AnalysisRecord] = {}
        self._suggestions: list[SuggestionRecord] = []

    async def save_analysis(self, analysis_id, store_id, summary, alerts, opportunities):
        record = AnalysisRecord(
            analysis_id=analysis_id,
            store_id=store_id,
            status=AnalysisStatus.COMPLETED,
            summary=summary,
            alerts=alerts,
            opportunities=opportunities,
        )
        self._analyses[analysis_id] = record
        logger.info(
            "Analysis saved",
            analysis_id=analysis_id,
            alerts=len(alerts),
            opportunities=len(opportunities),
        )
        return record

    async def save_suggestions(self, analysis_id, records):
        records = list(records)
        stray = [r.title for r in records if r.analysis_id != analysis_id]
        if stray:
            raise ValueError(f"Suggestions belong to another analysis: {stray}")
        self._suggestions = [
            s for s in self._suggestions if s.analysis_id != analysis_id
        ] + records
        logger.info("Suggestions saved", analysis_id=analysis_id, count=len(records))
        return records

    async def mark_failed(self, analysis_id, store_id, stage, error, details=None):
        record = AnalysisRecord(
            analysis_id=analysis_id,
            store_id=store_id,
            status=AnalysisStatus.FAILED,
            failed_stage=stage,
            error=error,
            error_details=details or {},
        )
        self._analyses[analysis_id] = record
        logger.error("Analysis marked failed", analysis_id=analysis_id, stage=stage, error=error)
        return record

    async def pending_suggestion_count(self, store_id):
        return sum(
            1 for s in self._suggestions
            if s.store_id == store_id and s.status in PENDING_STATUSES
        )

    async def get_analysis(self, analysis_id):
        return self._analyses.get(analysis_id)

    async def get_suggestions(self, analysis_id):
        return sorted(
            (s for s in self._suggestions if s.analysis_id == analysis_id),
            key=lambda s: s.priority,
        )


# =============================================================================
# State Persistence
# =============================================================================

class StatePersistence:
    """Abstract interface for state persistence."""

    async def save_state(self, run_id: str, state: dict[str, Any]) -> None:
        """Save pipeline state for recovery."""
        raise NotImplementedError

    async def load_state(self, run_id: str) -> Optional[dict[str, Any]]:
        """Load saved pipeline state."""
        raise NotImplementedError

    async def delete_state(self, run_id: str) -> None:
        """Delete saved pipeline state."""
        raise NotImplementedError


class InMemoryStatePersistence(StatePersistence):
    """In-memory state persistence for testing."""

    def __init__(self):
        self._states: dict[str, dict[str, Any]] = {}

    async def save_state(self, run_id: str, state: dict[str, Any]) -> None:
        self._states[run_id] = dict(state)

    async def load_state(self, run_id: str) -> Optional[dict[str, Any]]:
        return self._states.get(run_id)

    async def delete_state(self, run_id: str) -> None:
        self._states.pop(run_id, None)


__all__ = [
    "AnalysisRepository",
    "InMemoryAnalysisRepository",
    "StatePersistence",
    "InMemoryStatePersistence",
    "to_suggestion_record",
]
