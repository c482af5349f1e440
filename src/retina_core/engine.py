# ============================================================
#  engine.py — Monte Carlo decision simulation
# ============================================================

import dataclasses
import logging
import math
import numbers
from typing import Dict, List, Optional, Sequence

import numpy as np

from .data_structures import (
    BayesianOverride,
    CopulaConfig,
    DependenceConfig,
    GameConfig,
    Option,
    ScenarioVariable,
    SimulationResult,
    SimulationRun,
    TCORParams,
    UtilityParams,
)
from .dependence import (
    MAX_ABS_RHO,
    apply_copula,
    apply_rank_correlation,
    validate_copula_matrix,
)
from .distributions import ScenarioSampler
from .errors import ConfigurationError
from .risk_metrics import (
    conditional_value_at_risk,
    economic_capital,
    raroc,
    tcor_total,
    total_cost_of_risk,
    value_at_risk,
)
from .utility import build_utility, certainty_equivalent, expected_utility

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_MONTHS = 12.0
STRATEGIES = ("Conservative", "Aggressive")
COMPETITOR_MOVES = ("Match", "Undercut")


# ============================================================
#  Input validation (runs before any draw)
# ============================================================


def _check_number(value, what: str):
    if not isinstance(value, numbers.Real) or isinstance(value, bool):
        raise ConfigurationError(f"{what} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigurationError(f"{what} must be finite")


def _validate_options(options: Sequence[Option], horizon_months: Optional[float]):
    seen = set()
    for opt in options:
        if opt.id in seen:
            raise ConfigurationError(f"Duplicate option id: {opt.id}")
        seen.add(opt.id)
        _check_number(opt.expected_return, f"Option '{opt.id}' expected_return")
        _check_number(opt.cost, f"Option '{opt.id}' cost")
        if opt.mitigation_cost is not None:
            _check_number(opt.mitigation_cost, f"Option '{opt.id}' mitigation_cost")
        h = _horizon(opt, horizon_months)
        _check_number(h, f"Option '{opt.id}' horizon_months")
        if h <= 0:
            raise ConfigurationError(f"Option '{opt.id}' horizon_months must be > 0")


def _validate_game(game: GameConfig, strategies: Dict[str, str]):
    _check_number(game.p_undercut, "p_undercut")
    if not 0.0 <= game.p_undercut <= 1.0:
        raise ConfigurationError("p_undercut must lie in [0, 1]")
    for move in COMPETITOR_MOVES:
        for kind in ("ret_mult", "cost_mult"):
            for strat in STRATEGIES:
                try:
                    _check_number(game.multipliers[move][kind][strat], "multiplier")
                except KeyError as exc:
                    raise ConfigurationError(
                        f"Game multipliers missing {move}/{kind}/{strat}"
                    ) from exc
    for opt_id, strat in strategies.items():
        if strat not in STRATEGIES:
            raise ConfigurationError(f"Unknown strategy for option '{opt_id}': {strat}")


def _horizon(option: Option, horizon_months: Optional[float]) -> float:
    if option.horizon_months is not None:
        return option.horizon_months
    if horizon_months is not None:
        return horizon_months
    return DEFAULT_HORIZON_MONTHS


def _apply_bayesian(
    variables: List[ScenarioVariable], override: BayesianOverride
) -> List[ScenarioVariable]:
    out = []
    for var in variables:
        if var.id == override.target_var_id:
            if var.dist in ("normal", "lognormal"):
                params = dict(var.params)
                params["mean"] = override.posterior_mean
                params["std_dev"] = override.posterior_sd
                var = dataclasses.replace(var, params=params)
            else:
                logger.warning(
                    "Bayesian override ignored for '%s': %s prior is not supported",
                    var.id,
                    var.dist,
                )
        out.append(var)
    return out


def _var_index(variables: List[ScenarioVariable], var_id: str) -> int:
    for j, var in enumerate(variables):
        if var.id == var_id:
            return j
    raise ConfigurationError(f"Dependence references unknown variable: {var_id}")


# ============================================================
#  Aggregation
# ============================================================


def _aggregate(
    option: Option,
    outcomes: np.ndarray,
    h_months: float,
    utility_params: Optional[UtilityParams],
    tcor_params: Optional[TCORParams],
    achieved_spearman: Optional[float],
    copula_snapshot=None,
) -> SimulationResult:
    h = h_months / 12.0

    if np.ptp(outcomes) == 0.0:
        # zero variance: keep ev bit-exact
        ev = float(outcomes[0])
    else:
        ev = float(np.mean(outcomes))
    var95 = value_at_risk(outcomes)
    cvar95 = conditional_value_at_risk(outcomes)
    capital = economic_capital(ev, var95, h)

    result = SimulationResult(
        option_id=option.id,
        option_label=option.label,
        outcomes=outcomes,
        ev=ev,
        var95=var95,
        cvar95=cvar95,
        economic_capital=capital,
        raroc=raroc(ev, capital),
        horizon_months=float(h_months),
        achieved_spearman=achieved_spearman,
        copula_snapshot=copula_snapshot,
    )

    if utility_params is not None:
        eu = expected_utility(outcomes, utility_params)
        result.expected_utility = eu
        result.certainty_equivalent = certainty_equivalent(eu, utility_params)

    if tcor_params is not None:
        comps = total_cost_of_risk(
            outcomes, option.cost, capital, tcor_params, option.mitigation_cost
        )
        result.tcor_components = comps
        result.tcor = tcor_total(comps)

    return result


# ============================================================
#  MAIN ENTRY: run_simulation()
# ============================================================


def run_simulation(
    options: Sequence[Option],
    scenario_variables: Sequence[ScenarioVariable],
    runs: int,
    seed: int,
    utility_params: Optional[UtilityParams] = None,
    *,
    tcor_params: Optional[TCORParams] = None,
    horizon_months: Optional[float] = None,
    bayesian_override: Optional[BayesianOverride] = None,
    dependence: Optional[DependenceConfig] = None,
    game: Optional[GameConfig] = None,
    strategies: Optional[Dict[str, str]] = None,
    copula: Optional[CopulaConfig] = None,
) -> List[SimulationResult]:
    """
    Simulate ``runs`` outcomes per option and aggregate risk metrics.

    Per run r, with d the raw draws and w the variable weights:

        fr = max(0, 1 + sum(w * d) over return-side variables)
        fc = max(0, 1 + sum(w * d) over cost-side variables)
        outcome = (expected_return * fr - cost * fc) * horizon_months / 12

    Draws come from one PCG64 stream seeded with ``seed`` and are shared
    by every option. Stream order: scenario draws (run-major, then
    variable order), then copula or dependence re-pairing, then
    competitor moves. A copula replaces any pairwise dependence.
    Identical arguments give identical outcome arrays.
    """
    # ------------------------------------------------------------
    # Step 1 — Validate everything up front
    # ------------------------------------------------------------
    if not isinstance(runs, numbers.Integral) or isinstance(runs, bool):
        raise ConfigurationError(f"runs must be an integer, got {runs!r}")
    if runs < 1:
        raise ConfigurationError(f"runs must be >= 1, got {runs}")
    if not isinstance(seed, numbers.Integral) or isinstance(seed, bool):
        raise ConfigurationError(f"seed must be an integer, got {seed!r}")
    if seed < 0:
        raise ConfigurationError(f"seed must be >= 0, got {seed}")

    options = list(options)
    variables = list(scenario_variables)
    strategies = dict(strategies or {})

    _validate_options(options, horizon_months)
    if utility_params is not None:
        build_utility(utility_params)
    if tcor_params is not None:
        _check_number(tcor_params.insurance_rate, "insurance_rate")
        _check_number(tcor_params.contingency_on_cap, "contingency_on_cap")
    if game is not None:
        _validate_game(game, strategies)

    if bayesian_override is not None:
        variables = _apply_bayesian(variables, bayesian_override)

    sampler = ScenarioSampler(variables)

    dep_idx = None
    if dependence is not None:
        ja = _var_index(variables, dependence.var_a_id)
        jb = _var_index(variables, dependence.var_b_id)
        if ja == jb:
            raise ConfigurationError("Dependence needs two distinct variables")
        _check_number(dependence.target_rho, "target_rho")
        if abs(dependence.target_rho) > MAX_ABS_RHO:
            raise ConfigurationError(
                f"target_rho must lie in [{-MAX_ABS_RHO}, {MAX_ABS_RHO}], got {dependence.target_rho}"
            )
        dep_idx = (ja, jb)

    copula_matrix = None
    if copula is not None:
        copula_matrix = validate_copula_matrix(copula.matrix, len(variables))
        if dep_idx is not None:
            logger.info("Copula matrix given; pairwise dependence is not applied")
            dep_idx = None

    if not options:
        return []

    logger.info(
        "Simulating %d option(s) x %d run(s), %d variable(s), seed=%d",
        len(options),
        runs,
        len(variables),
        seed,
    )

    # ------------------------------------------------------------
    # Step 2 — Draw the shared scenarios
    # ------------------------------------------------------------
    rng = np.random.default_rng(seed)
    draws = sampler.draw(rng, runs)  # [runs, n_vars]

    achieved_spearman = None
    copula_snapshot = None
    if copula_matrix is not None:
        draws, copula_snapshot = apply_copula(
            draws, copula_matrix, copula.use_nearest_pd, rng
        )
    elif dep_idx is not None:
        ja, jb = dep_idx
        draws[:, jb], achieved_spearman = apply_rank_correlation(
            draws[:, ja], draws[:, jb], dependence.target_rho, rng
        )

    undercut = None
    if game is not None:
        undercut = rng.random(runs) < game.p_undercut

    weights = np.array([v.weight for v in variables], dtype=np.float64)
    is_return = np.array([v.applies_to == "return" for v in variables], dtype=bool)
    contrib = draws * weights

    ret_factor = np.maximum(0.0, 1.0 + contrib[:, is_return].sum(axis=1))
    cost_factor = np.maximum(0.0, 1.0 + contrib[:, ~is_return].sum(axis=1))

    # ------------------------------------------------------------
    # Step 3 — Per-option outcomes + aggregation
    # ------------------------------------------------------------
    results = []
    for opt in options:
        ret = opt.expected_return * ret_factor
        cost = opt.cost * cost_factor

        if undercut is not None:
            strat = strategies.get(opt.id, "Conservative")
            m = game.multipliers
            ret = ret * np.where(
                undercut, m["Undercut"]["ret_mult"][strat], m["Match"]["ret_mult"][strat]
            )
            cost = cost * np.where(
                undercut, m["Undercut"]["cost_mult"][strat], m["Match"]["cost_mult"][strat]
            )

        h_months = _horizon(opt, horizon_months)
        outcomes = (ret - cost) * (h_months / 12.0)

        results.append(
            _aggregate(
                opt,
                outcomes,
                h_months,
                utility_params,
                tcor_params,
                achieved_spearman,
                copula_snapshot,
            )
        )

    return results


def simulate(
    options: Sequence[Option],
    scenario_variables: Sequence[ScenarioVariable],
    runs: int,
    seed: int,
    utility_params: Optional[UtilityParams] = None,
    **kwargs,
) -> SimulationRun:
    """run_simulation() wrapped with its parameters, for saving and reporting."""
    results = run_simulation(
        options, scenario_variables, runs, seed, utility_params, **kwargs
    )
    return SimulationRun(
        results=results,
        runs=runs,
        seed=seed,
        horizon_months=kwargs.get("horizon_months"),
        utility=utility_params,
        metadata={
            "num_options": len(results),
            "num_variables": len(scenario_variables),
        },
    )
