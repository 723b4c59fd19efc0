"""
Suggestion filtering.

Three passes keep a run's output fresh:

    1. Theme saturation: themes already suggested three or more times in
       earlier runs are blocked outright.
    2. Intra-batch dedup: near-identical titles inside one batch collapse
       to the first occurrence.
    3. Semantic similarity: each survivor is embedded and compared against
       the store's stored suggestions with a threshold that tightens as the
       pending history grows.

The semantic pass fails open. An embedding error keeps the suggestion, and
if every suggestion is filtered out the best ones are recovered.

Example:
    >>> kept = await filter_by_similarity(approved, store_id=7, embeddings=svc)
"""

import re
import unicodedata
from typing import Any, Iterable, Optional

from store_insights.models.schemas import PreviousSuggestion, ReviewedSuggestion, SuggestionStatus
from store_insights.services.embedding_service import EmbeddingService
from store_insights.utils.logger import get_logger

logger = get_logger(__name__)

SATURATION_THRESHOLD = 2
BLOCK_THRESHOLD = 3
BATCH_SIMILARITY_THRESHOLD = 0.85
PERSIST_SIMILARITY_THRESHOLD = 0.80
MAX_RECOVERED = 9
UNTITLED = "untitled suggestion"

PENDING_STATUSES = {
    SuggestionStatus.PENDING.value,
    SuggestionStatus.NEW.value,
    SuggestionStatus.ACCEPTED.value,
    SuggestionStatus.IN_PROGRESS.value,
}
DISMISSED_STATUSES = {SuggestionStatus.REJECTED.value, SuggestionStatus.IGNORED.value}

# (max pending suggestions, threshold, reason)
ADAPTIVE_THRESHOLDS = [
    (10, 0.85, "low_history"),
    (25, 0.90, "moderate_history"),
    (50, 0.93, "large_history"),
]
VERY_LARGE_HISTORY = (0.95, "very_large_history")


# =============================================================================
# Text Helpers
# =============================================================================

def _ascii_fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def normalize_title(title: str) -> str:
    """Lowercase ASCII words separated by single spaces."""
    text = _ascii_fold((title or "").lower())
    text = re.sub(r"[^a-z0-9\s]", "", text)
    return re.sub(r"\s+", " ", text).strip()


def title_similarity(a: str, b: str) -> float:
    """Jaccard index over the unique words of two normalized titles."""
    words_a = set(a.split())
    words_b = set(b.split())
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def _theme_text(title: str, description: str) -> str:
    return _ascii_fold(f"{title} {description}".lower())


def _match_theme(text: str, theme_keywords: dict[str, list[str]]) -> list[str]:
    return [
        theme for theme, keywords in theme_keywords.items()
        if any(keyword in text for keyword in keywords)
    ]


# =============================================================================
# Theme Saturation
# =============================================================================

def identify_saturated_themes(
    previous: Iterable[PreviousSuggestion],
    theme_keywords: dict[str, list[str]],
) -> dict[str, int]:
    """
    Count how often each theme appeared in earlier suggestions.

    Returns themes seen at least twice plus every theme of a rejected or
    ignored suggestion, sorted by count, highest first.
    """
    counts: dict[str, int] = {}
    dismissed: set[str] = set()

    for suggestion in previous:
        text = _theme_text(suggestion.title, suggestion.description)
        for theme in _match_theme(text, theme_keywords):
            counts[theme] = counts.get(theme, 0) + 1
            if suggestion.status in DISMISSED_STATUSES:
                dismissed.add(theme)

    saturated = {theme: count for theme, count in counts.items() if count >= SATURATION_THRESHOLD}
    for theme in dismissed:
        saturated.setdefault(theme, counts.get(theme, 1))

    return dict(sorted(saturated.items(), key=lambda kv: kv[1], reverse=True))


def filter_saturated_themes(
    suggestions: list[ReviewedSuggestion],
    saturated_themes: dict[str, int],
    theme_keywords: dict[str, list[str]],
) -> list[ReviewedSuggestion]:
    """Drop suggestions touching a theme suggested three or more times."""
    blocked = {theme for theme, count in saturated_themes.items() if count >= BLOCK_THRESHOLD}
    if not blocked:
        return suggestions

    kept = []
    for suggestion in suggestions:
        final = suggestion.final_version
        text = _theme_text(final.title, final.description)
        hits = [theme for theme in _match_theme(text, theme_keywords) if theme in blocked]
        if hits:
            logger.info("Suggestion blocked by saturated theme", title=final.title, themes=hits)
            continue
        kept.append(suggestion)
    return kept


# =============================================================================
# Deduplication
# =============================================================================

def filter_intra_batch_duplicates(suggestions: list[ReviewedSuggestion]) -> list[ReviewedSuggestion]:
    """Keep the first of any titles that match exactly or nearly."""
    seen_exact: set[str] = set()
    seen_normalized: list[str] = []
    kept = []

    for suggestion in suggestions:
        title = suggestion.final_version.title
        exact = title.strip().lower()
        normalized = normalize_title(title)

        if exact in seen_exact:
            logger.info("Duplicate title in batch dropped", title=title)
            continue
        duplicate_of = next(
            (seen for seen in seen_normalized
             if title_similarity(normalized, seen) >= BATCH_SIMILARITY_THRESHOLD),
            None,
        )
        if duplicate_of is not None:
            logger.info("Near-duplicate title in batch dropped", title=title, similar_to=duplicate_of)
            continue

        seen_exact.add(exact)
        seen_normalized.append(normalized)
        kept.append(suggestion)

    return kept


def dedupe_for_persistence(suggestions: list[ReviewedSuggestion]) -> list[ReviewedSuggestion]:
    """
    Final dedup before saving, then renumber priorities from 1.

    Untitled suggestions are never treated as duplicates.
    """
    seen_exact: set[str] = set()
    seen_normalized: list[str] = []
    kept = []

    for suggestion in suggestions:
        title = suggestion.final_version.title.strip().lower()
        if not title or title == UNTITLED:
            kept.append(suggestion)
            continue

        normalized = normalize_title(title)
        if title in seen_exact or any(
            title_similarity(normalized, seen) >= PERSIST_SIMILARITY_THRESHOLD
            for seen in seen_normalized
        ):
            logger.info("Duplicate dropped before persistence", title=suggestion.final_version.title)
            continue

        seen_exact.add(title)
        seen_normalized.append(normalized)
        kept.append(suggestion)

    return [s.model_copy(update={"final_priority": i}) for i, s in enumerate(kept, 1)]


# =============================================================================
# Semantic Similarity
# =============================================================================

def adaptive_threshold(pending_count: int) -> tuple[float, str]:
    """Similarity threshold and its reason for a given pending history size."""
    for limit, threshold, reason in ADAPTIVE_THRESHOLDS:
        if pending_count <= limit:
            return threshold, reason
    return VERY_LARGE_HISTORY


def count_pending(previous: Iterable[PreviousSuggestion]) -> int:
    return sum(1 for s in previous if s.status in PENDING_STATUSES)


async def filter_by_similarity(
    suggestions: list[ReviewedSuggestion],
    store_id: Any,
    embeddings: Optional[EmbeddingService],
    pending_count: int = 0,
) -> list[ReviewedSuggestion]:
    """Drop suggestions too close to ones already stored for the store."""
    batch = filter_intra_batch_duplicates(suggestions)
    if embeddings is None or not embeddings.is_configured:
        logger.info("Embeddings not configured, skipping similarity filter", kept=len(batch))
        return batch

    threshold, reason = adaptive_threshold(pending_count)
    logger.info(
        "Similarity threshold selected",
        threshold=threshold,
        reason=reason,
        pending_count=pending_count,
    )

    kept: list[ReviewedSuggestion] = []
    filtered: list[ReviewedSuggestion] = []
    for suggestion in batch:
        final = suggestion.final_version
        try:
            vector = await embeddings.embed(f"{final.title} {final.description}")
            with_vector = suggestion.model_copy(update={"embedding": vector})
            if await embeddings.is_too_similar(vector, store_id, threshold):
                filtered.append(with_vector)
            else:
                kept.append(with_vector)
        except Exception as e:
            logger.warning("Similarity check failed, keeping suggestion", title=final.title, error=str(e))
            kept.append(suggestion)

    if not kept and filtered:
        recovered = sorted(filtered, key=lambda s: s.quality_score, reverse=True)[:MAX_RECOVERED]
        logger.warning(
            "All suggestions filtered as similar, recovering best",
            filtered=len(filtered),
            recovered=len(recovered),
        )
        return recovered

    logger.info("Similarity filter complete", kept=len(kept), filtered=len(filtered))
    return kept


__all__ = [
    "normalize_title",
    "title_similarity",
    "identify_saturated_themes",
    "filter_saturated_themes",
    "filter_intra_batch_duplicates",
    "dedupe_for_persistence",
    "adaptive_threshold",
    "count_pending",
    "filter_by_similarity",
]
