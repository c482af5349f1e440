from dataclasses import dataclass, field
from typing import Dict, Optional, Any, List

import numpy as np


# ----------------------------------------------------------------------
# Simulation inputs
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class ScenarioVariable:
    """
    One uncertain driver of a decision.

    ``applies_to`` selects the side it perturbs ("return" or "cost");
    ``dist`` is one of "normal", "lognormal", "triangular", "uniform" and
    ``params`` must carry exactly the keys that family needs.
    """

    id: str
    name: str
    applies_to: str
    dist: str
    params: Dict[str, float]
    weight: float = 1.0


@dataclass(frozen=True)
class Partner:
    id: str
    credit_exposure: float
    dependency_score: float  # in [0, 1]


@dataclass(frozen=True)
class Option:
    """One decision alternative being compared."""

    id: str
    label: str
    expected_return: float = 0.0
    cost: float = 0.0
    mitigation_cost: Optional[float] = None
    horizon_months: Optional[float] = None
    partners: List[Partner] = field(default_factory=list)


@dataclass(frozen=True)
class UtilityParams:
    mode: str = "CARA"  # CARA | CRRA | Exponential | Quadratic | Power
    a: float = 1.0  # risk-aversion coefficient
    scale: float = 1.0  # outcome normalization divisor


@dataclass(frozen=True)
class TCORParams:
    insurance_rate: float = 0.0  # fraction of option cost
    contingency_on_cap: float = 0.0  # fraction of economic capital


@dataclass(frozen=True)
class BayesianOverride:
    """Posterior mean / sd replacing a normal or lognormal prior."""

    target_var_id: str
    posterior_mean: float
    posterior_sd: float


@dataclass(frozen=True)
class DependenceConfig:
    var_a_id: str
    var_b_id: str
    target_rho: float  # target rank correlation in [-0.9, 0.9]


@dataclass(frozen=True)
class CopulaConfig:
    """
    Full k x k rank-correlation target over every scenario variable, in
    variable order. Takes precedence over a pairwise DependenceConfig.
    """

    matrix: List[List[float]]  # symmetric, unit diagonal
    use_nearest_pd: bool = True

    @property
    def k(self) -> int:
        return len(self.matrix)


# multipliers[move][kind][strategy]
DEFAULT_GAME_MULTIPLIERS: Dict[str, Dict[str, Dict[str, float]]] = {
    "Match": {
        "ret_mult": {"Conservative": 1.0, "Aggressive": 1.05},
        "cost_mult": {"Conservative": 1.0, "Aggressive": 1.0},
    },
    "Undercut": {
        "ret_mult": {"Conservative": 0.95, "Aggressive": 0.85},
        "cost_mult": {"Conservative": 1.0, "Aggressive": 1.02},
    },
}


@dataclass(frozen=True)
class GameConfig:
    """
    2x2 game between our strategy and a competitor move.

    Each run draws one competitor move ("Undercut" with probability
    ``p_undercut``, else "Match"), shared by every option.
    """

    p_undercut: float = 0.4
    multipliers: Dict[str, Dict[str, Dict[str, float]]] = field(
        default_factory=lambda: DEFAULT_GAME_MULTIPLIERS
    )


# ----------------------------------------------------------------------
# Simulation outputs
# ----------------------------------------------------------------------


@dataclass
class TCORComponents:
    expected_loss: float
    insurance: float
    contingency: float
    mitigation: float


@dataclass
class CopulaSnapshot:
    """Target vs achieved Spearman matrices of one copula application."""

    k: int
    target: List[List[float]]  # as requested
    achieved: List[List[float]]
    fro_err: float  # Frobenius norm of achieved minus the imposed matrix
    repaired: bool = False  # nearest-PD projection was applied


@dataclass
class SimulationResult:
    """
    Aggregated Monte Carlo output for one option.

    ``outcomes`` has shape [runs] and is already horizon-scaled.
    """

    option_id: str
    option_label: str
    outcomes: np.ndarray  # [runs]
    ev: float
    var95: float
    cvar95: float
    economic_capital: float
    raroc: float  # NaN when economic capital is zero
    horizon_months: float = 12.0

    expected_utility: Optional[float] = None
    certainty_equivalent: Optional[float] = None

    tcor: Optional[float] = None
    tcor_components: Optional[TCORComponents] = None

    achieved_spearman: Optional[float] = None
    copula_snapshot: Optional[CopulaSnapshot] = None


@dataclass
class SimulationRun:
    """
    Container for every option's result under the same scenario draws.
    """

    results: List[SimulationResult]

    runs: int
    seed: int
    horizon_months: Optional[float] = None
    utility: Optional[UtilityParams] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get(self, option_id: str) -> SimulationResult:
        """Convenience: run.get("opt-a") instead of scanning run.results."""
        for res in self.results:
            if res.option_id == option_id:
                return res
        raise KeyError(option_id)


# ----------------------------------------------------------------------
# Goal dependency graph
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class GoalDependency:
    goal_id: str
    depends_on: List[str] = field(default_factory=list)
    enables: List[str] = field(default_factory=list)


@dataclass
class CycleDetectionResult:
    has_cycle: bool
    cycle: Optional[List[str]] = None  # starts and ends at the repeated node
    message: str = ""


@dataclass
class ValidationResult:
    is_valid: bool
    error: Optional[str] = None


@dataclass
class AffectedGoals:
    upstream: List[str]
    downstream: List[str]


# ----------------------------------------------------------------------
# Credit risk
# ----------------------------------------------------------------------


@dataclass
class CreditRiskResult:
    score: int  # 0-100, relative to the comparison set
    level: str  # Low | Medium | High
    total_exposure: float
    average_dependency: float
