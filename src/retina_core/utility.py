# retina_core/utility.py
"""
Risk-preference models.

Every model works on the normalized outcome ``xs = outcome / scale`` and
reduces to a linear utility as the risk-aversion coefficient ``a`` goes
to zero. ``inverse`` maps an expected utility back to a normalized
certainty equivalent.
"""
import math
from dataclasses import dataclass

import numpy as np

from .data_structures import UtilityParams
from .errors import ConfigurationError, DomainError


# |a| below this uses the exact linear limit
RISK_NEUTRAL_EPS = 1e-12


# ---------- Utility components ----------


class UtilityFunction:
    def value(self, xs: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def inverse(self, eu: float) -> float:
        raise NotImplementedError


@dataclass
class CARAUtility(UtilityFunction):
    """
    Constant absolute risk aversion: u(x) = (1 - exp(-a x)) / a.
    """

    a: float = 1.0

    def value(self, xs):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return xs
        return -np.expm1(-self.a * xs) / self.a

    def inverse(self, eu):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return eu
        if self.a * eu >= 1.0:
            raise DomainError(f"CARA expected utility {eu} is outside (-inf, 1/a)")
        return -math.log1p(-self.a * eu) / self.a


@dataclass
class ExponentialUtility(UtilityFunction):
    """
    Exponential utility normalized to u(0) = 0 and u(1) = 1:
    u(x) = (1 - exp(-a x)) / (1 - exp(-a)).
    """

    a: float = 1.0

    def value(self, xs):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return xs
        return np.expm1(-self.a * xs) / math.expm1(-self.a)

    def inverse(self, eu):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return eu
        arg = eu * math.expm1(-self.a)
        if arg <= -1.0:
            raise DomainError(f"Exponential expected utility {eu} is outside the model range")
        return -math.log1p(arg) / self.a


@dataclass
class CRRAUtility(UtilityFunction):
    """
    Constant relative risk aversion: u(x) = (x^(1-a) - 1) / (1 - a),
    ln(x) at a = 1. Defined for x > 0 only, except in the linear case a = 0.
    """

    a: float = 1.0

    def value(self, xs):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return xs - 1.0
        _require_positive(xs, "CRRA")
        if abs(self.a - 1.0) < RISK_NEUTRAL_EPS:
            return np.log(xs)
        k = 1.0 - self.a
        return np.expm1(k * np.log(xs)) / k

    def inverse(self, eu):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return eu + 1.0
        if abs(self.a - 1.0) < RISK_NEUTRAL_EPS:
            return math.exp(eu)
        k = 1.0 - self.a
        base = 1.0 + k * eu
        if base <= 0.0:
            raise DomainError(f"CRRA expected utility {eu} is outside the model range")
        return base ** (1.0 / k)


@dataclass
class QuadraticUtility(UtilityFunction):
    """u(x) = x - (a / 2) x^2."""

    a: float = 1.0

    def value(self, xs):
        return xs - 0.5 * self.a * xs * xs

    def inverse(self, eu):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return eu
        disc = 1.0 - 2.0 * self.a * eu
        if disc < 0.0:
            raise DomainError(f"Quadratic expected utility {eu} exceeds the satiation level")
        return (1.0 - math.sqrt(disc)) / self.a


@dataclass
class PowerUtility(UtilityFunction):
    """u(x) = x^(1-a), ln(x) at a = 1. Defined for x > 0 unless a = 0."""

    a: float = 0.5

    def value(self, xs):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return xs
        _require_positive(xs, "Power")
        if abs(self.a - 1.0) < RISK_NEUTRAL_EPS:
            return np.log(xs)
        return np.power(xs, 1.0 - self.a)

    def inverse(self, eu):
        if abs(self.a) < RISK_NEUTRAL_EPS:
            return eu
        if abs(self.a - 1.0) < RISK_NEUTRAL_EPS:
            return math.exp(eu)
        if eu <= 0.0:
            raise DomainError(f"Power expected utility {eu} must be positive")
        return eu ** (1.0 / (1.0 - self.a))


def _require_positive(xs, mode: str):
    if np.any(xs <= 0.0):
        raise DomainError(
            f"{mode} utility is undefined for non-positive normalized outcomes"
        )


UTILITY_MODES = {
    "CARA": CARAUtility,
    "CRRA": CRRAUtility,
    "Exponential": ExponentialUtility,
    "Quadratic": QuadraticUtility,
    "Power": PowerUtility,
}


def build_utility(params: UtilityParams) -> UtilityFunction:
    cls = UTILITY_MODES.get(params.mode)
    if cls is None:
        raise ConfigurationError(f"Unknown utility mode: {params.mode}")
    if not math.isfinite(params.a):
        raise ConfigurationError("Utility coefficient 'a' must be finite")
    if not (math.isfinite(params.scale) and params.scale > 0):
        raise ConfigurationError("Utility 'scale' must be a positive number")
    return cls(a=float(params.a))


# ---------- Public API ----------


def compute_utility(outcome, params: UtilityParams):
    """
    Utility of ``outcome`` (a number or an array of numbers).

    Raises DomainError when the outcome is outside the model's domain or
    the utility overflows.
    """
    fn = build_utility(params)
    xs = np.asarray(outcome, dtype=np.float64) / params.scale

    with np.errstate(over="ignore"):
        u = fn.value(xs)

    if not np.all(np.isfinite(u)):
        raise DomainError(
            f"{params.mode} utility overflowed; increase 'scale' (currently {params.scale})"
        )
    if np.ndim(u) == 0:
        return float(u)
    return u


def expected_utility(outcomes, params: UtilityParams) -> float:
    outcomes = np.asarray(outcomes, dtype=np.float64)
    if outcomes.size == 0:
        raise ConfigurationError("Expected utility needs at least one outcome")
    return float(np.mean(compute_utility(outcomes, params)))


def certainty_equivalent(eu: float, params: UtilityParams) -> float:
    """
    The sure outcome whose utility equals ``eu``:
    compute_utility(certainty_equivalent(eu, p), p) == eu.
    """
    fn = build_utility(params)
    return float(fn.inverse(float(eu))) * params.scale
