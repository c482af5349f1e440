from .errors import RetinaError, ConfigurationError, DomainError
from .data_structures import (
    ScenarioVariable,
    Option,
    Partner,
    UtilityParams,
    TCORParams,
    BayesianOverride,
    CopulaConfig,
    DependenceConfig,
    GameConfig,
    SimulationResult,
    SimulationRun,
    GoalDependency,
    CycleDetectionResult,
    CreditRiskResult,
)
from .distributions import sample
from .engine import run_simulation, simulate
from .utility import compute_utility, expected_utility, certainty_equivalent
from .dependency_graph import (
    would_create_cycle,
    validate_dependencies,
    get_topological_order,
    get_affected_goals,
)
from .credit_risk import compute_credit_risk_score
