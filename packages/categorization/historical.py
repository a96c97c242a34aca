"""Historical pattern learning.

Past categorised transactions are matched against a new one on three tiers:

    exact         normalised descriptions are identical (score 100)
    fuzzy         one description contains the other (score 80), or token
                  Jaccard similarity reaches the fuzzy threshold
    amount_range  settlement amounts within a relative tolerance, scored
                  below every description tier

Rows outside the lookback window are excluded outright. Manual overrides
have their score multiplied by ``manual_override_weight``.
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set

import structlog

from packages.ingestion_engine.models import ProcessingStatus, Transaction

from .models import MATCH_TYPE_RANK, HistoricalSuggestion, MatchType, SimilarityMatch

logger = structlog.get_logger()

EXACT_SCORE = 100
SUBSTRING_SCORE = 80
AMOUNT_RANGE_MAX_SCORE = 50

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class LearnerConfig:
    lookback_days: int = 90
    manual_override_weight: float = 2.0
    fuzzy_match_threshold: int = 60
    amount_range_tolerance: float = 0.1


def normalize_description(description: str) -> str:
    lowered = _WHITESPACE.sub(" ", (description or "").lower().strip())
    return _PUNCTUATION.sub("", lowered)


def tokenize(description: str) -> Set[str]:
    return {token for token in normalize_description(description).split() if token}


def jaccard_similarity(left: Set[str], right: Set[str]) -> int:
    union = left | right
    if not union:
        return 0
    return round(len(left & right) / len(union) * 100)


class HistoricalPatternLearner:
    def __init__(self, config: Optional[LearnerConfig] = None):
        self.config = config or LearnerConfig()

    def find_similar(
        self,
        transaction: Transaction,
        corpus: Iterable[Transaction],
        limit: int = 5,
        recency_window_days: Optional[int] = None,
    ) -> List[SimilarityMatch]:
        """Best matches for ``transaction``, highest weighted score first, newest first on ties."""
        window = self.config.lookback_days if recency_window_days is None else recency_window_days
        eligible = self._eligible(transaction, corpus, window)
        if not eligible:
            return []

        target_norm = normalize_description(transaction.description)
        target_tokens = tokenize(transaction.description)
        target_amount = _comparable_amount(transaction)

        best: Dict[str, SimilarityMatch] = {}
        for past in eligible:
            for match in self._candidate_matches(past, target_norm, target_tokens, target_amount):
                current = best.get(past.id)
                if current is None or _better(match, current):
                    best[past.id] = match

        ordered = sorted(best.values(), key=lambda m: (m.weighted_score, m.date), reverse=True)
        return ordered[:limit]

    def suggest_category(self, matches: List[SimilarityMatch]) -> Optional[HistoricalSuggestion]:
        """Historical consensus: the category with the highest summed weighted score.

        Confidence combines agreement ratio (50), average unweighted match
        quality (40) and a flat 10 when a manual override backs the winner.
        """
        if not matches:
            return None

        grouped: Dict[str, List[SimilarityMatch]] = {}
        for match in matches:
            grouped.setdefault(match.category_key, []).append(match)

        # max() keeps the first of equal totals, i.e. the best-ranked match's category.
        winner = max(grouped.values(), key=lambda group: sum(m.weighted_score for m in group))

        agreement = len(winner) / len(matches)
        quality = sum(m.score for m in winner) / len(winner) / 100
        manual_bonus = 10 if any(m.was_manual_override for m in winner) else 0
        confidence = min(100, round(agreement * 50 + quality * 40 + manual_bonus))

        return HistoricalSuggestion(
            category_id=winner[0].category_id,
            category_name=winner[0].category_name,
            confidence=confidence,
        )

    def _eligible(self, transaction: Transaction, corpus: Iterable[Transaction], window_days: int):
        cutoff = transaction.transaction_date - timedelta(days=window_days)
        eligible = []
        for past in corpus:
            if past.id == transaction.id:
                continue
            if past.processing_status in (ProcessingStatus.ERROR, ProcessingStatus.UNPROCESSED):
                continue
            if past.effective_category() is None:
                continue
            if past.transaction_date < cutoff:
                continue
            eligible.append(past)
        return eligible

    def _candidate_matches(self, past, target_norm, target_tokens, target_amount):
        past_norm = normalize_description(past.description)

        if target_norm and past_norm == target_norm:
            yield self._match(past, EXACT_SCORE, MatchType.EXACT)
        else:
            if target_norm and past_norm and (target_norm in past_norm or past_norm in target_norm):
                yield self._match(past, SUBSTRING_SCORE, MatchType.FUZZY)
            score = jaccard_similarity(target_tokens, tokenize(past.description))
            if self.config.fuzzy_match_threshold <= score < 100:
                yield self._match(past, score, MatchType.FUZZY)

        past_amount = _comparable_amount(past)
        if target_amount and past_amount is not None:
            tolerance = target_amount * self.config.amount_range_tolerance
            difference = abs(target_amount - past_amount)
            if tolerance > 0 and difference <= tolerance:
                score = round(AMOUNT_RANGE_MAX_SCORE * (1 - difference / tolerance))
                yield self._match(past, score, MatchType.AMOUNT_RANGE)

    def _match(self, past: Transaction, score: int, match_type: MatchType) -> SimilarityMatch:
        category_id, category_name = past.effective_category()
        manual = past.has_manual_category
        weighted = score * self.config.manual_override_weight if manual else float(score)
        return SimilarityMatch(
            transaction_id=past.id,
            description=past.description,
            category_id=category_id,
            category_name=category_name,
            was_manual_override=manual,
            confidence_score=past.category_confidence_score,
            amount=_comparable_amount(past) or 0.0,
            date=past.transaction_date,
            score=score,
            weighted_score=weighted,
            match_type=match_type,
        )


def _better(candidate: SimilarityMatch, current: SimilarityMatch) -> bool:
    candidate_rank = MATCH_TYPE_RANK[candidate.match_type]
    current_rank = MATCH_TYPE_RANK[current.match_type]
    if candidate_rank != current_rank:
        return candidate_rank < current_rank
    return candidate.weighted_score > current.weighted_score


def _comparable_amount(transaction: Transaction) -> Optional[float]:
    if transaction.settlement_amount_value is not None:
        return abs(transaction.settlement_amount_value)
    return None
