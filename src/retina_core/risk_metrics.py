# retina_core/risk_metrics.py
import math
from typing import Optional

import numpy as np

from .data_structures import TCORComponents, TCORParams


# ------------------------------------------------------------
# Tail statistics
# ------------------------------------------------------------


def tail_index(n: int, level: float = 0.05) -> int:
    """Nearest-rank index of the ``level`` quantile in a sorted array of size n."""
    return int(math.floor(n * level))


def value_at_risk(outcomes: np.ndarray, level: float = 0.05) -> float:
    """
    Loss-side quantile: sorted(outcomes)[floor(level * n)].
    """
    srt = np.sort(outcomes)
    return float(srt[tail_index(srt.size, level)])


def conditional_value_at_risk(outcomes: np.ndarray, level: float = 0.05) -> float:
    """
    Mean of every outcome at or below the VaR cutoff
    (sorted[: floor(level * n) + 1]).
    """
    srt = np.sort(outcomes)
    return float(np.mean(srt[: tail_index(srt.size, level) + 1]))


def economic_capital(ev: float, var95: float, horizon_factor: float = 1.0) -> float:
    """
    max(0, EV - VaR95) scaled by sqrt(h) for horizon h in years.

    A heavy left tail can drag the mean below the 5th percentile; that
    distribution has no positive capital and is reported as 0.
    """
    return max(0.0, ev - var95) * math.sqrt(horizon_factor)


def raroc(ev: float, capital: float) -> float:
    """ev / capital; NaN when capital is not positive."""
    if not capital > 0.0:
        return float("nan")
    return ev / capital


# ------------------------------------------------------------
# Total cost of risk
# ------------------------------------------------------------


def total_cost_of_risk(
    outcomes: np.ndarray,
    cost: float,
    capital: float,
    params: TCORParams,
    mitigation_cost: Optional[float] = None,
) -> TCORComponents:
    """
    expected_loss = P(outcome < 0) * mean |negative outcome|, plus insurance
    on cost, contingency on capital and the option's own mitigation spend.
    """
    losses = outcomes[outcomes < 0]
    p_loss = losses.size / outcomes.size
    mean_loss = float(np.mean(np.abs(losses))) if losses.size > 0 else 0.0

    return TCORComponents(
        expected_loss=p_loss * mean_loss,
        insurance=params.insurance_rate * cost,
        contingency=params.contingency_on_cap * capital,
        mitigation=mitigation_cost or 0.0,
    )


def tcor_total(c: TCORComponents) -> float:
    return c.expected_loss + c.insurance + c.contingency + c.mitigation
