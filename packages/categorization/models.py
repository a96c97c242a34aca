"""Value objects exchanged between the learner, the calculator and the categorizer."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class MatchType(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    AMOUNT_RANGE = "amount_range"


# Lower rank wins when one history row matches on several tiers.
MATCH_TYPE_RANK = {
    MatchType.EXACT: 1,
    MatchType.FUZZY: 2,
    MatchType.AMOUNT_RANGE: 3,
}


@dataclass
class SimilarityMatch:
    """One past transaction offered as evidence for a category."""

    transaction_id: str
    description: str
    category_id: Optional[str]
    category_name: str
    was_manual_override: bool
    amount: float
    date: datetime
    score: int
    weighted_score: float
    match_type: MatchType
    confidence_score: Optional[float] = None

    @property
    def category_key(self) -> str:
        # Custom manual categories have a name but no id.
        return self.category_id or f"name:{self.category_name.lower()}"


@dataclass
class HistoricalSuggestion:
    category_id: Optional[str]
    category_name: str
    confidence: int


@dataclass
class ConfidenceInputs:
    ai_confidence: float
    ai_category_id: str
    historical_matches: List[SimilarityMatch] = field(default_factory=list)
    historical_suggestion: Optional[HistoricalSuggestion] = None


@dataclass
class ConfidenceBreakdown:
    final_score: int
    ai_score: float
    historical_score: float
    consensus_boost: float
    conflict_penalty: float
    historical_match_count: int
    manual_override_count: int
