# retina_core/credit_risk.py
import math
from typing import Optional, Sequence

from .data_structures import CreditRiskResult, Partner
from .errors import ConfigurationError


# Tier boundaries on the unrounded 0-100 score
LOW_BELOW = 33.0
MEDIUM_BELOW = 67.0


def raw_score(partners: Optional[Sequence[Partner]]) -> float:
    """Sum of credit_exposure x dependency_score."""
    if not partners:
        return 0.0
    return sum(p.credit_exposure * p.dependency_score for p in partners)


def risk_level(score: float) -> str:
    if score < LOW_BELOW:
        return "Low"
    elif score < MEDIUM_BELOW:
        return "Medium"
    else:
        return "High"


def _check_partner(p: Partner):
    # NaN fails both comparisons below, so test finiteness first
    if not math.isfinite(p.credit_exposure):
        raise ConfigurationError(f"Partner '{p.id}': credit_exposure must be finite")
    if p.credit_exposure < 0:
        raise ConfigurationError(f"Partner '{p.id}': credit_exposure must be >= 0")
    if not (math.isfinite(p.dependency_score) and 0.0 <= p.dependency_score <= 1.0):
        raise ConfigurationError(f"Partner '{p.id}': dependency_score must lie in [0, 1]")


def compute_credit_risk_score(
    partners: Optional[Sequence[Partner]],
    all_options_for_comparison: Sequence,
) -> CreditRiskResult:
    """
    Relative 0-100 credit risk of one partner set.

    The raw score is normalized by the largest raw score among the
    comparison set (and this set), so the riskiest set scores 100.
    ``all_options_for_comparison`` holds objects with a ``partners``
    attribute (Option) or dicts with a "partners" key.
    """
    if not partners:
        return CreditRiskResult(
            score=0, level="Low", total_exposure=0.0, average_dependency=0.0
        )

    comparison = [_partners_of(o) or [] for o in all_options_for_comparison]
    for p in partners:
        _check_partner(p)
    for others in comparison:
        for p in others:
            _check_partner(p)

    raw = raw_score(partners)
    total_exposure = sum(p.credit_exposure for p in partners)
    average_dependency = sum(p.dependency_score for p in partners) / len(partners)

    max_raw = max([raw] + [raw_score(others) for others in comparison])
    normalized = 100.0 * raw / max_raw if max_raw > 0 else 0.0

    return CreditRiskResult(
        score=int(math.floor(normalized + 0.5)),  # half-up
        level=risk_level(normalized),
        total_exposure=total_exposure,
        average_dependency=average_dependency,
    )


def _partners_of(option) -> Optional[Sequence[Partner]]:
    if isinstance(option, dict):
        return option.get("partners")
    return getattr(option, "partners", None)
