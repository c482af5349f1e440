import os
import logging
import yaml
from datetime import datetime
from typing import Optional

from .data_structures import (
    BayesianOverride,
    CopulaConfig,
    DependenceConfig,
    DEFAULT_GAME_MULTIPLIERS,
    GameConfig,
    GoalDependency,
    Option,
    Partner,
    ScenarioVariable,
    TCORParams,
    UtilityParams,
)
from .credit_risk import compute_credit_risk_score
from .dependency_graph import build_graph, find_cycle, get_topological_order
from .engine import simulate
from .errors import ConfigurationError
from .results_io import save_run, load_run
from .summary import generate_summary

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------


def now_id() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def ensure_dir(path: str):
    if not os.path.exists(path):
        os.makedirs(path)


def discover_runs(root: str = "results"):
    if not os.path.exists(root):
        return []
    return sorted(d for d in os.listdir(root) if os.path.isdir(os.path.join(root, d)))


def load_config(config_file: str) -> dict:
    with open(config_file, "r") as f:
        cfg = yaml.safe_load(f)
    if not isinstance(cfg, dict):
        raise ConfigurationError(f"{config_file}: expected a mapping at the top level")
    return cfg


def _require(cfg: dict, key: str, what: str):
    if key not in cfg:
        raise ConfigurationError(f"{what}: missing required key '{key}'")
    return cfg[key]


def _num(val, what: str) -> float:
    try:
        return float(val)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{what}: expected a number, got {val!r}") from exc


# ------------------------------------------------------------
# Component Builders
# ------------------------------------------------------------


def build_partner(cfg: dict) -> Partner:
    pid = str(_require(cfg, "id", "partner"))
    return Partner(
        id=pid,
        credit_exposure=_num(_require(cfg, "credit_exposure", pid), f"{pid}.credit_exposure"),
        dependency_score=_num(_require(cfg, "dependency_score", pid), f"{pid}.dependency_score"),
    )


def build_option(cfg: dict) -> Option:
    oid = str(_require(cfg, "id", "option"))
    mitigation = cfg.get("mitigation_cost")
    horizon = cfg.get("horizon_months")
    return Option(
        id=oid,
        label=str(cfg.get("label", oid)),
        expected_return=_num(cfg.get("expected_return", 0.0), f"{oid}.expected_return"),
        cost=_num(cfg.get("cost", 0.0), f"{oid}.cost"),
        mitigation_cost=None if mitigation is None else _num(mitigation, f"{oid}.mitigation_cost"),
        horizon_months=None if horizon is None else _num(horizon, f"{oid}.horizon_months"),
        partners=[build_partner(p) for p in cfg.get("partners", [])],
    )


def build_variable(cfg: dict) -> ScenarioVariable:
    vid = str(_require(cfg, "id", "variable"))
    params = cfg.get("params", {})
    if not isinstance(params, dict):
        raise ConfigurationError(f"{vid}.params must be a mapping")
    return ScenarioVariable(
        id=vid,
        name=str(cfg.get("name", vid)),
        applies_to=str(cfg.get("applies_to", "return")),
        dist=str(_require(cfg, "dist", vid)),
        params={k: _num(v, f"{vid}.params.{k}") for k, v in params.items()},
        weight=_num(cfg.get("weight", 1.0), f"{vid}.weight"),
    )


def build_utility_params(cfg) -> Optional[UtilityParams]:
    if cfg is None:
        return None
    return UtilityParams(
        mode=str(cfg.get("mode", "CARA")),
        a=_num(cfg.get("a", 1.0), "utility.a"),
        scale=_num(cfg.get("scale", 1.0), "utility.scale"),
    )


def build_tcor(cfg) -> Optional[TCORParams]:
    if cfg is None:
        return None
    return TCORParams(
        insurance_rate=_num(cfg.get("insurance_rate", 0.0), "tcor.insurance_rate"),
        contingency_on_cap=_num(cfg.get("contingency_on_cap", 0.0), "tcor.contingency_on_cap"),
    )


def build_bayesian(cfg) -> Optional[BayesianOverride]:
    if cfg is None:
        return None
    return BayesianOverride(
        target_var_id=str(_require(cfg, "target_var_id", "bayesian")),
        posterior_mean=_num(_require(cfg, "posterior_mean", "bayesian"), "bayesian.posterior_mean"),
        posterior_sd=_num(_require(cfg, "posterior_sd", "bayesian"), "bayesian.posterior_sd"),
    )


def build_dependence(cfg) -> Optional[DependenceConfig]:
    if cfg is None:
        return None
    return DependenceConfig(
        var_a_id=str(_require(cfg, "var_a_id", "dependence")),
        var_b_id=str(_require(cfg, "var_b_id", "dependence")),
        target_rho=_num(_require(cfg, "target_rho", "dependence"), "dependence.target_rho"),
    )


def build_copula(cfg) -> Optional[CopulaConfig]:
    if cfg is None:
        return None
    matrix = _require(cfg, "matrix", "copula")
    if not isinstance(matrix, list) or not all(isinstance(row, list) for row in matrix):
        raise ConfigurationError("copula.matrix must be a list of rows")
    return CopulaConfig(
        matrix=[[_num(v, "copula.matrix") for v in row] for row in matrix],
        use_nearest_pd=bool(cfg.get("use_nearest_pd", True)),
    )


def build_game(cfg) -> Optional[GameConfig]:
    if cfg is None:
        return None
    return GameConfig(
        p_undercut=_num(cfg.get("p_undercut", 0.4), "game.p_undercut"),
        multipliers=cfg.get("multipliers", DEFAULT_GAME_MULTIPLIERS),
    )


def build_goal(cfg: dict) -> GoalDependency:
    return GoalDependency(
        goal_id=str(_require(cfg, "goal_id", "goal")),
        depends_on=[str(g) for g in cfg.get("depends_on", [])],
        enables=[str(g) for g in cfg.get("enables", [])],
    )


# ------------------------------------------------------------
# Run experiment defined by YAML config
# ------------------------------------------------------------


def run_experiment_from_config(config_file: str, root: str = "results") -> str:
    cfg = load_config(config_file)

    # Build inputs (all validation errors surface before any output is written)
    options = [build_option(o) for o in _require(cfg, "options", config_file)]
    variables = [build_variable(v) for v in cfg.get("variables", [])]
    utility = build_utility_params(cfg.get("utility"))

    runs = cfg.get("runs", 1000)
    seed = cfg.get("seed", 42)

    run = simulate(
        options,
        variables,
        runs,
        seed,
        utility,
        tcor_params=build_tcor(cfg.get("tcor")),
        horizon_months=cfg.get("horizon_months"),
        bayesian_override=build_bayesian(cfg.get("bayesian")),
        dependence=build_dependence(cfg.get("dependence")),
        game=build_game(cfg.get("game")),
        strategies=cfg.get("strategies"),
        copula=build_copula(cfg.get("copula")),
    )

    exp_name = cfg.get("name", "experiment")
    rid = f"{now_id()}_{exp_name}"
    outdir = os.path.join(root, rid)
    ensure_dir(outdir)

    print("\n=== Running Experiment ===")
    print(f"Config: {config_file}")
    print(f"Run ID: {rid}")
    print(f"Options: {[o.label for o in options]}")
    print(f"Variables: {[v.name for v in variables]}")
    print(f"Runs: {runs}  Seed: {seed}")
    print()

    print(f"Saving results → {outdir}")
    save_run(run, outdir)

    summary_path = generate_summary(run, outdir, options=options)
    print(f"Summary report → {summary_path}")

    with open(os.path.join(outdir, "config_used.yaml"), "w") as f:
        yaml.safe_dump(cfg, f)

    print("Done.")
    return outdir


def summarize_experiment(run_dir: str) -> str:
    """Regenerate summary.md from a saved run directory."""
    logger.info("Loading results from %s", run_dir)
    run = load_run(run_dir)

    options = None
    cfg_path = os.path.join(run_dir, "config_used.yaml")
    if os.path.exists(cfg_path):
        options = [build_option(o) for o in load_config(cfg_path).get("options", [])]

    path = generate_summary(run, run_dir, options=options)
    print(f"Summary report → {path}")
    return path


# ------------------------------------------------------------
# Goal graph + credit checks
# ------------------------------------------------------------


def check_goal_dependencies(config_file: str) -> bool:
    """
    Print a dependency order for the config's ``goals``, or the first
    cycle found. Returns True when the graph is acyclic.
    """
    goals = [build_goal(g) for g in load_config(config_file).get("goals", [])]

    order = get_topological_order(goals)
    if order is not None:
        print("Goal order: " + " → ".join(order) if order else "No goals defined.")
        return True

    # each id depends on the next
    cycle = find_cycle(build_graph(goals))[::-1]
    print(f"Circular dependency detected: {' → '.join(cycle)}")
    return False


def credit_report(config_file: str):
    options = [build_option(o) for o in _require(load_config(config_file), "options", config_file)]

    print(f"{'Option':<24} {'Score':>5}  {'Level':<6}  {'Exposure':>16}  {'Avg Dep':>7}")
    scores = {}
    for o in options:
        cr = compute_credit_risk_score(o.partners, options)
        scores[o.id] = cr
        print(
            f"{o.label:<24} {cr.score:>5}  {cr.level:<6}  "
            f"{cr.total_exposure:>16,.2f}  {cr.average_dependency:>7.2f}"
        )
    return scores


# ------------------------------------------------------------
# List all runs
# ------------------------------------------------------------


def list_experiments(root: str = "results"):
    runs = discover_runs(root)
    print("\n=== Available Experiment Runs ===")
    if not runs:
        print("(none)")
        return
    for r in runs:
        print(" •", r)
