"""Blends AI confidence with historical evidence into one calibrated score."""

from dataclasses import dataclass
from typing import List

from packages.ingestion_engine.errors import CategorizationError, ConfigurationError

from .models import ConfidenceBreakdown, ConfidenceInputs, SimilarityMatch

# Absorbs float rounding only.
WEIGHT_SUM_TOLERANCE = 1e-9
MAX_MANUAL_CONSENSUS_BOOST = 10
MANUAL_CONFLICT_MULTIPLIER = 1.5


@dataclass(frozen=True)
class ConfidenceConfig:
    ai_weight: float = 0.6
    historical_weight: float = 0.4
    consensus_bonus: float = 15
    conflict_penalty: float = -15
    min_historical_matches: int = 2
    manual_override_boost: float = 5

    def validate(self) -> None:
        """Raise ConfigurationError when any tunable is out of bounds."""
        if not 0 <= self.ai_weight <= 1:
            raise ConfigurationError(f"Invalid ai_weight: {self.ai_weight}. Must be between 0 and 1.")
        if not 0 <= self.historical_weight <= 1:
            raise ConfigurationError(
                f"Invalid historical_weight: {self.historical_weight}. Must be between 0 and 1."
            )
        total = self.ai_weight + self.historical_weight
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ConfigurationError(
                f"Weights must sum to 1.0. Current sum: {total} "
                f"(ai_weight: {self.ai_weight}, historical_weight: {self.historical_weight})"
            )
        if not 0 <= self.consensus_bonus <= 20:
            raise ConfigurationError(
                f"Invalid consensus_bonus: {self.consensus_bonus}. Must be between 0 and 20."
            )
        if not -20 <= self.conflict_penalty <= 0:
            raise ConfigurationError(
                f"Invalid conflict_penalty: {self.conflict_penalty}. Must be between -20 and 0."
            )
        if self.min_historical_matches < 0:
            raise ConfigurationError(
                f"Invalid min_historical_matches: {self.min_historical_matches}. Must be >= 0."
            )
        if not 0 <= self.manual_override_boost <= 10:
            raise ConfigurationError(
                f"Invalid manual_override_boost: {self.manual_override_boost}. Must be between 0 and 10."
            )


class ConfidenceCalculator:
    """
    Computes the final category confidence.

    final = clamp(round(ai_confidence * ai_weight
                        + historical * historical_weight
                        + consensus_boost + conflict_penalty), 0, 100)

    ``historical`` is the mean weighted match score capped at 100 and
    discounted when only one or two matches corroborate it.
    """

    def __init__(self, config: ConfidenceConfig = ConfidenceConfig()):
        config.validate()
        self.config = config

    def calculate(self, inputs: ConfidenceInputs) -> ConfidenceBreakdown:
        self._validate_inputs(inputs)
        matches = inputs.historical_matches

        ai_score = inputs.ai_confidence * self.config.ai_weight
        historical_score = historical_evidence_score(matches) * self.config.historical_weight
        manual_count = sum(1 for m in matches if m.was_manual_override)

        consensus_boost = 0.0
        conflict_penalty = 0.0
        suggestion = inputs.historical_suggestion
        if suggestion is not None and len(matches) >= self.config.min_historical_matches:
            agrees = _same_category(inputs.ai_category_id, suggestion.category_id, suggestion.category_name)
            if agrees:
                consensus_boost = float(self.config.consensus_bonus)
                if manual_count:
                    consensus_boost += min(
                        self.config.manual_override_boost * manual_count,
                        MAX_MANUAL_CONSENSUS_BOOST,
                    )
            else:
                conflict_penalty = float(self.config.conflict_penalty)
                if manual_count:
                    conflict_penalty *= MANUAL_CONFLICT_MULTIPLIER

        final_score = clamp_score(ai_score + historical_score + consensus_boost + conflict_penalty)

        return ConfidenceBreakdown(
            final_score=final_score,
            ai_score=round(ai_score, 2),
            historical_score=round(historical_score, 2),
            consensus_boost=consensus_boost,
            conflict_penalty=conflict_penalty,
            historical_match_count=len(matches),
            manual_override_count=manual_count,
        )

    def calculate_score(self, inputs: ConfidenceInputs) -> int:
        return self.calculate(inputs).final_score

    @staticmethod
    def _validate_inputs(inputs: ConfidenceInputs) -> None:
        if inputs.ai_confidence is None or not 0 <= inputs.ai_confidence <= 100:
            raise CategorizationError(
                f"Invalid ai_confidence: {inputs.ai_confidence}. Must be between 0 and 100."
            )
        if not inputs.ai_category_id or not isinstance(inputs.ai_category_id, str):
            raise CategorizationError("ai_category_id must be a non-empty string")
        suggestion = inputs.historical_suggestion
        if suggestion is not None and not 0 <= suggestion.confidence <= 100:
            raise CategorizationError(
                f"Invalid historical suggestion confidence: {suggestion.confidence}"
            )


def historical_evidence_score(matches: List[SimilarityMatch]) -> float:
    """Unweighted-by-config historical score in 0..100."""
    if not matches:
        return 0.0
    mean_weighted = sum(m.weighted_score for m in matches) / len(matches)
    if len(matches) == 1:
        multiplier = 0.7
    elif len(matches) == 2:
        multiplier = 0.85
    else:
        multiplier = 1.0
    return min(100.0, mean_weighted) * multiplier


def clamp_score(value: float) -> int:
    return max(0, min(100, round(value)))


def _same_category(ai_category_id: str, category_id, category_name: str) -> bool:
    if category_id:
        return ai_category_id == category_id
    # Custom manual categories carry only a name.
    return ai_category_id.lower() == category_name.lower()
