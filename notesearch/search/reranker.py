"""Fusion and reranking of search results.

Provides Reciprocal Rank Fusion for merging ranked lists, additive boost
reranking (title, recency, tag, exact phrase), Jaccard-based
diversification, plus a BM25 scorer and a linear feature reranker for
offline experimentation.

All sorts are stable: results with equal scores keep their incoming order.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime

from notesearch.constants import MatchType
from notesearch.search.models import ParsedQuery, RankingFeature, SearchOptions, SearchResult
from notesearch.search.params import RerankConfig
from notesearch.utils.datetime_utils import days_between, months_between

BM25_K1 = 1.5
BM25_B = 0.75

# bm25, semantic, title match, tag matches, freshness, length (per 1000 chars), term matches
LINEAR_WEIGHTS: tuple[float, ...] = (1.0, 0.8, 2.0, 0.5, 0.3, 0.1, 0.5)

_MAX_KEY_TERMS = 10


def _key_terms(result: SearchResult) -> set[str]:
    """First ten distinct lower-case words longer than four characters."""
    terms: list[str] = []
    for word in f"{result.title} {result.content}".lower().split():
        if len(word) > 4 and word not in terms:
            terms.append(word)
            if len(terms) == _MAX_KEY_TERMS:
                break
    return set(terms)


def _jaccard(a: set[str], b: set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


class Reranker:
    """Fuses and reranks result lists.

    Args:
        config: Ranking constants; defaults to :class:`RerankConfig` defaults.
    """

    def __init__(self, config: RerankConfig | None = None) -> None:
        self.config = config or RerankConfig()

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    def reciprocal_rank_fusion(
        self,
        result_sets: Sequence[Sequence[SearchResult]],
        weights: Sequence[float] | None = None,
    ) -> list[SearchResult]:
        """Merge ranked lists with (weighted) Reciprocal Rank Fusion.

        Each occurrence contributes ``weight / (k + rank)`` with 1-indexed
        ranks. Contributions are summed per ``note_id``. The fused result
        keeps the first-seen result's fields, takes ``match_type=hybrid``
        and the union of matched terms.

        Raises:
            ValueError: If ``weights`` does not have one entry per list.
        """
        if weights is not None and len(weights) != len(result_sets):
            raise ValueError("weights must have one entry per result set")

        k = self.config.rrf_k
        scores: dict[str, float] = {}
        first_seen: dict[str, SearchResult] = {}
        matched: dict[str, list[str]] = {}

        for index, results in enumerate(result_sets):
            weight = weights[index] if weights is not None else 1.0
            for rank, result in enumerate(results, start=1):
                note_id = result.note_id
                scores[note_id] = scores.get(note_id, 0.0) + weight / (k + rank)
                if note_id not in first_seen:
                    first_seen[note_id] = result
                    matched[note_id] = list(result.matched_terms)
                else:
                    for term in result.matched_terms:
                        if term not in matched[note_id]:
                            matched[note_id].append(term)

        ordered = sorted(scores, key=lambda note_id: scores[note_id], reverse=True)
        return [
            first_seen[note_id].model_copy(
                update={
                    "score": scores[note_id],
                    "match_type": MatchType.HYBRID,
                    "matched_terms": matched[note_id],
                }
            )
            for note_id in ordered
        ]

    # ------------------------------------------------------------------
    # Boosting
    # ------------------------------------------------------------------

    def rerank(
        self,
        results: Sequence[SearchResult],
        query: ParsedQuery,
        options: SearchOptions,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """Add boosts to each score and re-sort descending.

        Never adds or removes results.
        """
        if not results:
            return []

        now = now or datetime.now(UTC)
        boosted = [
            result.model_copy(update={"score": result.score + self._boost(result, query, options, now)})
            for result in results
        ]
        boosted.sort(key=lambda result: result.score, reverse=True)
        return boosted

    def _boost(self, result: SearchResult, query: ParsedQuery, options: SearchOptions, now: datetime) -> float:
        boost = 0.0
        if options.boost_title_matches:
            boost += self.title_boost(result, query, options.title_weight)
        if options.boost_recent:
            boost += self.recency_boost(result.updated_at, now)
        if options.boost_tags:
            boost += self.tag_boost(result, query)
        if options.boost_exact_phrases:
            boost += self.exact_phrase_boost(result, query)
        return boost

    def title_boost(self, result: SearchResult, query: ParsedQuery, title_weight: float | None = None) -> float:
        """``title_weight`` once if any term occurs in the title, plus
        ``exact_boost`` when a term longer than 3 characters is the whole title.

        ``title_weight`` defaults to the configured ``title_boost``.
        """
        if title_weight is None:
            title_weight = self.config.title_boost
        title = result.title.lower()
        terms = [term.lower() for term in query.search_terms if term]
        if not any(term in title for term in terms):
            return 0.0

        boost = title_weight
        if any(len(term) > 3 and term == title for term in terms):
            boost += self.config.exact_boost
        return boost

    def recency_boost(self, updated_at: datetime, now: datetime) -> float:
        """``recent_boost * decay_factor ** months``, whole months elapsed."""
        months = months_between(updated_at, now)
        return self.config.recent_boost * self.config.decay_factor**months

    def tag_boost(self, result: SearchResult, query: ParsedQuery) -> float:
        if not query.tags:
            return 0.0
        result_tags = {tag.lower() for tag in result.tags}
        query_tags = {tag.lower() for tag in query.tags}
        return self.config.tag_boost * len(result_tags & query_tags)

    def exact_phrase_boost(self, result: SearchResult, query: ParsedQuery) -> float:
        """``exact_boost`` once if any quoted phrase occurs in the title or content."""
        title = result.title.lower()
        content = result.content.lower()
        for phrase in query.phrases:
            phrase = phrase.lower()
            if phrase in title or phrase in content:
                return self.config.exact_boost
        return 0.0

    # ------------------------------------------------------------------
    # Diversification
    # ------------------------------------------------------------------

    def diversify(self, results: Sequence[SearchResult]) -> list[SearchResult]:
        """Drop near-duplicates by key-term Jaccard similarity.

        A result is dropped when its similarity to any accepted result
        exceeds ``diversity_threshold``. The first result is always kept and
        at most ``diversity_max_results`` are returned.
        """
        if len(results) <= 1:
            return list(results)

        threshold = self.config.diversity_threshold
        accepted: list[SearchResult] = []
        accepted_terms: list[set[str]] = []

        for result in results:
            if accepted and len(accepted) >= self.config.diversity_max_results:
                break
            terms = _key_terms(result)
            if accepted and any(_jaccard(terms, seen) > threshold for seen in accepted_terms):
                continue
            accepted.append(result)
            accepted_terms.append(terms)

        return accepted

    # ------------------------------------------------------------------
    # Feature scoring
    # ------------------------------------------------------------------

    @staticmethod
    def bm25_score(
        document_tokens: Sequence[str],
        query_terms: Sequence[str],
        avg_doc_length: float,
        doc_freq: Mapping[str, int],
        total_docs: int,
        doc_length: int | None = None,
    ) -> float:
        """Okapi BM25 (k1=1.5, b=0.75) of one document for the query terms.

        Terms missing from ``doc_freq`` are treated as occurring in one
        document. ``doc_length`` defaults to ``len(document_tokens)``.
        """
        tokens = [token.lower() for token in document_tokens]
        length = len(tokens) if doc_length is None else doc_length
        avg = avg_doc_length if avg_doc_length > 0 else 1.0

        score = 0.0
        for term in query_terms:
            term = term.lower()
            tf = tokens.count(term)
            if tf == 0:
                continue
            df = doc_freq.get(term, 1)
            idf = math.log((total_docs - df + 0.5) / (df + 0.5) + 1)
            norm = tf * (BM25_K1 + 1) / (tf + BM25_K1 * (1 - BM25_B + BM25_B * length / avg))
            score += idf * norm
        return score

    def build_features(
        self,
        results: Sequence[SearchResult],
        query: ParsedQuery,
        bm25_scores: Mapping[str, float] | None = None,
        semantic_scores: Mapping[str, float] | None = None,
        now: datetime | None = None,
    ) -> list[RankingFeature]:
        """Extract a :class:`RankingFeature` per result.

        Score maps are keyed by ``note_id``. When absent, a result's own
        score is used for the path that produced it.
        """
        now = now or datetime.now(UTC)
        terms = [term.lower() for term in query.search_terms if term]
        query_tags = {tag.lower() for tag in query.tags}
        features: list[RankingFeature] = []

        for result in results:
            title = result.title.lower()
            text = f"{title} {result.content.lower()}"

            if bm25_scores is not None:
                bm25 = bm25_scores.get(result.note_id, 0.0)
            else:
                bm25 = result.score if result.match_type == MatchType.FULL_TEXT else 0.0
            if semantic_scores is not None:
                semantic = semantic_scores.get(result.note_id, 0.0)
            else:
                semantic = result.score if result.match_type == MatchType.SEMANTIC else 0.0

            features.append(
                RankingFeature(
                    result_id=result.id,
                    bm25_score=bm25,
                    semantic_score=semantic,
                    title_match=any(term in title for term in terms),
                    tag_match_count=len({tag.lower() for tag in result.tags} & query_tags),
                    days_since_update=days_between(result.updated_at, now),
                    content_length=len(result.content),
                    match_count=sum(1 for term in terms if term in text),
                )
            )
        return features

    @staticmethod
    def linear_rerank(features: Sequence[RankingFeature]) -> list[str]:
        """Score features with fixed linear weights; return result ids best first."""
        w = LINEAR_WEIGHTS
        scored: list[tuple[str, float]] = []
        for feature in features:
            score = (
                w[0] * feature.bm25_score
                + w[1] * feature.semantic_score
                + w[2] * (1.0 if feature.title_match else 0.0)
                + w[3] * feature.tag_match_count
                + w[4] * (1.0 / max(1, feature.days_since_update))
                + w[5] * feature.content_length / 1000.0
                + w[6] * feature.match_count
            )
            scored.append((feature.result_id, score))

        scored.sort(key=lambda item: item[1], reverse=True)
        return [result_id for result_id, _ in scored]
