# retina_core/distributions.py
import math
import numbers
from typing import Dict, List, Sequence

import numpy as np

from .data_structures import ScenarioVariable
from .errors import ConfigurationError


REQUIRED_PARAMS: Dict[str, tuple] = {
    "normal": ("mean", "std_dev"),
    "lognormal": ("mean", "std_dev"),  # of the underlying normal
    "triangular": ("min", "mode", "max"),
    "uniform": ("min", "max"),
}

# Every draw consumes this many uniforms, whatever the family, so the
# stream position only depends on (run, variable).
UNIFORMS_PER_DRAW = 2


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------


def param_labels(dist: str) -> List[str]:
    if dist not in REQUIRED_PARAMS:
        raise ConfigurationError(f"Unknown distribution: {dist}")
    return list(REQUIRED_PARAMS[dist])


def validate_params(dist: str, params: Dict[str, float]) -> None:
    """
    Check ``params`` carries exactly the keys ``dist`` needs, with sane values.
    """
    required = param_labels(dist)

    for key in required:
        if key not in params:
            raise ConfigurationError(
                f"Missing parameter '{key}' for {dist} distribution"
            )

    extra = sorted(set(params) - set(required))
    if extra:
        raise ConfigurationError(
            f"Unexpected parameter(s) {extra} for {dist} distribution"
        )

    for key in required:
        val = params[key]
        if not isinstance(val, numbers.Real) or isinstance(val, bool):
            raise ConfigurationError(f"Parameter '{key}' must be a number, got {val!r}")
        if not math.isfinite(val):
            raise ConfigurationError(f"Parameter '{key}' must be finite")

    if dist in ("normal", "lognormal"):
        if params["std_dev"] < 0:
            raise ConfigurationError("Parameter 'std_dev' must be >= 0")

    elif dist == "triangular":
        lo, mode, hi = params["min"], params["mode"], params["max"]
        if not lo < hi:
            raise ConfigurationError("Triangular distribution needs min < max")
        if not lo <= mode <= hi:
            raise ConfigurationError("Triangular distribution needs min <= mode <= max")

    elif dist == "uniform":
        if params["min"] > params["max"]:
            raise ConfigurationError("Uniform distribution needs min <= max")


def validate_variable(variable: ScenarioVariable) -> None:
    if variable.applies_to not in ("return", "cost"):
        raise ConfigurationError(
            f"Variable '{variable.id}': applies_to must be 'return' or 'cost', "
            f"got {variable.applies_to!r}"
        )
    if not math.isfinite(variable.weight):
        raise ConfigurationError(f"Variable '{variable.id}': weight must be finite")
    try:
        validate_params(variable.dist, variable.params)
    except ConfigurationError as exc:
        raise ConfigurationError(f"Variable '{variable.id}': {exc}") from exc


# ----------------------------------------------------------------------
# Transforms (uniform pair -> family sample)
# ----------------------------------------------------------------------


def _box_muller(u1: np.ndarray, u2: np.ndarray) -> np.ndarray:
    # u1 is in [0, 1); log1p(-u1) keeps the log argument in (0, 1]
    return np.sqrt(-2.0 * np.log1p(-u1)) * np.cos(2.0 * np.pi * u2)


def transform(dist: str, params: Dict[str, float], u1, u2) -> np.ndarray:
    """
    Map uniforms in [0, 1) to samples of ``dist``.

    normal / lognormal use both uniforms (Box-Muller); triangular and
    uniform use ``u1`` only. Works on scalars or arrays.
    """
    u1 = np.asarray(u1, dtype=np.float64)
    u2 = np.asarray(u2, dtype=np.float64)

    if dist == "normal":
        return params["mean"] + params["std_dev"] * _box_muller(u1, u2)

    if dist == "lognormal":
        return np.exp(params["mean"] + params["std_dev"] * _box_muller(u1, u2))

    if dist == "triangular":
        lo, mode, hi = params["min"], params["mode"], params["max"]
        width = hi - lo
        fc = (mode - lo) / width
        left = lo + np.sqrt(u1 * width * (mode - lo))
        right = hi - np.sqrt((1.0 - u1) * width * (hi - mode))
        return np.where(u1 < fc, left, right)

    if dist == "uniform":
        return params["min"] + (params["max"] - params["min"]) * u1

    raise ConfigurationError(f"Unknown distribution: {dist}")


# ----------------------------------------------------------------------
# Sampling
# ----------------------------------------------------------------------


def sample(dist: str, params: Dict[str, float], rng: np.random.Generator) -> float:
    """Draw a single sample; advances ``rng`` by UNIFORMS_PER_DRAW uniforms."""
    validate_params(dist, params)
    u1, u2 = rng.random(UNIFORMS_PER_DRAW)
    return float(transform(dist, params, u1, u2))


class ScenarioSampler:
    """
    Draws every scenario variable for every run from one seeded stream.

    Stream order: run-major, then variables in list order, then the
    UNIFORMS_PER_DRAW uniforms of each draw.
    """

    def __init__(self, variables: Sequence[ScenarioVariable]):
        for v in variables:
            validate_variable(v)
        self.variables = list(variables)

    def draw(self, rng: np.random.Generator, runs: int) -> np.ndarray:
        """Returns raw (unweighted) draws of shape [runs, n_vars]."""
        n_vars = len(self.variables)
        u = rng.random((runs, n_vars, UNIFORMS_PER_DRAW))

        draws = np.empty((runs, n_vars), dtype=np.float64)
        for j, var in enumerate(self.variables):
            draws[:, j] = transform(var.dist, var.params, u[:, j, 0], u[:, j, 1])
        return draws


def format_param_summary(variable: ScenarioVariable) -> str:
    p = variable.params
    if variable.dist == "normal":
        return f"N(μ={p.get('mean', 0)}, σ={p.get('std_dev', 1)})"
    if variable.dist == "lognormal":
        return f"LogN(μ={p.get('mean', 0)}, σ={p.get('std_dev', 1)})"
    if variable.dist == "triangular":
        return f"Tri({p.get('min', -1)}, {p.get('mode', 0)}, {p.get('max', 1)})"
    if variable.dist == "uniform":
        return f"U({p.get('min', 0)}, {p.get('max', 1)})"
    return ""
