# retina_core/dependence.py
import logging
from typing import Tuple

import numpy as np
from scipy.stats import rankdata, spearmanr

from .data_structures import CopulaSnapshot
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


MAX_ABS_RHO = 0.9
SYMMETRY_TOL = 1e-6
# off-diagonal targets at or below this leave a variable independent
MIN_COPULA_RHO = 0.01


def spearman_rho(a: np.ndarray, b: np.ndarray) -> float:
    """Spearman rank correlation; 0.0 when either side is constant."""
    if a.size < 2 or np.ptp(a) == 0 or np.ptp(b) == 0:
        return 0.0
    rho, _ = spearmanr(a, b)
    rho = float(rho)
    return rho if np.isfinite(rho) else 0.0


def apply_rank_correlation(
    a: np.ndarray,
    b: np.ndarray,
    target_rho: float,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, float]:
    """
    Re-pair ``b`` against ``a`` so their rank correlation approaches
    ``target_rho``.

    Each target rank blends a's rank with a random rank, weight |rho| on
    a's rank; negative rho reads b's sorted values from the top. Draws
    ``len(a)`` integers from ``rng``.

    Returns (b_correlated, achieved_spearman).
    """
    if not -MAX_ABS_RHO <= target_rho <= MAX_ABS_RHO:
        raise ConfigurationError(
            f"target_rho must lie in [{-MAX_ABS_RHO}, {MAX_ABS_RHO}], got {target_rho}"
        )

    n = a.size
    if n == 0:
        return b.copy(), 0.0

    ranks_a = rankdata(a, method="ordinal") - 1
    b_sorted = np.sort(b)

    r_rand = rng.integers(0, n, size=n)
    w = abs(target_rho)
    r_target = np.rint((1.0 - w) * r_rand + w * ranks_a).astype(np.int64)
    r_target = np.clip(r_target, 0, n - 1)

    if target_rho >= 0:
        b_corr = b_sorted[r_target]
    else:
        b_corr = b_sorted[n - 1 - r_target]

    return b_corr, spearman_rho(a, b_corr)


# ---------- k x k copula ----------


def validate_copula_matrix(matrix, k: int) -> np.ndarray:
    """
    Check a k x k correlation target: square, finite, entries in [-1, 1],
    unit diagonal and symmetric. Returns it as a float array.
    """
    try:
        m = np.asarray(matrix, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError("Copula matrix must be a square grid of numbers") from exc

    if k == 0 and m.size == 0:
        m = m.reshape(0, 0)
    if m.shape != (k, k):
        raise ConfigurationError(
            f"Copula matrix must be {k}x{k} (one row per scenario variable), got shape {m.shape}"
        )
    if not np.all(np.isfinite(m)):
        raise ConfigurationError("Copula matrix entries must be finite")
    if np.any(np.abs(m) > 1.0):
        raise ConfigurationError("Copula matrix entries must lie in [-1, 1]")
    if not np.allclose(np.diag(m), 1.0):
        raise ConfigurationError("Copula matrix diagonal must be 1")
    if np.any(np.abs(m - m.T) > SYMMETRY_TOL):
        raise ConfigurationError("Copula matrix must be symmetric")
    return m


def is_positive_definite(m: np.ndarray) -> bool:
    try:
        np.linalg.cholesky(m)
    except np.linalg.LinAlgError:
        return False
    return True


def nearest_pd(m: np.ndarray, eps: float = 1e-8) -> np.ndarray:
    """
    Nearest correlation matrix by eigenvalue clipping: negative eigenvalues
    are raised to ``eps`` and the result is rescaled to unit diagonal.
    """
    sym = 0.5 * (m + m.T)
    w, v = np.linalg.eigh(sym)
    out = (v * np.clip(w, eps, None)) @ v.T
    d = np.sqrt(np.diag(out))
    out = out / np.outer(d, d)
    out = 0.5 * (out + out.T)
    np.fill_diagonal(out, 1.0)
    return out


def spearman_matrix(draws: np.ndarray) -> np.ndarray:
    """Pairwise Spearman matrix of the columns of ``draws`` [runs, k]."""
    k = draws.shape[1]
    out = np.eye(k)
    for i in range(k):
        for j in range(i + 1, k):
            out[i, j] = out[j, i] = spearman_rho(draws[:, i], draws[:, j])
    return out


def apply_copula(
    draws: np.ndarray,
    matrix: np.ndarray,
    use_nearest_pd: bool,
    rng: np.random.Generator,
) -> Tuple[np.ndarray, CopulaSnapshot]:
    """
    Impose a rank-correlation matrix on the columns of ``draws``.

    Column 0 is kept; every later column i is re-paired against the
    earlier column j with the largest |matrix[i, j]| (first on ties),
    using apply_rank_correlation with the target clipped to
    [-0.9, 0.9]. Pairs at or below 0.01 stay independent.

    A matrix that fails Cholesky is projected with nearest_pd() when
    ``use_nearest_pd`` is set and used as-is otherwise.
    """
    runs, k = draws.shape
    target = matrix.tolist()

    working = matrix
    repaired = False
    if k > 0 and not is_positive_definite(matrix):
        if use_nearest_pd:
            working = nearest_pd(matrix)
            repaired = True
            logger.info("Copula matrix is not positive definite; applied nearest-PD projection")
        else:
            logger.warning("Copula matrix is not positive definite; using it as-is")

    out = draws.copy()
    if runs > 0:
        for i in range(1, k):
            weights = np.abs(working[i, :i])
            j = int(np.argmax(weights))
            if weights[j] > MIN_COPULA_RHO:
                rho = float(np.clip(working[i, j], -MAX_ABS_RHO, MAX_ABS_RHO))
                out[:, i], _ = apply_rank_correlation(out[:, j], draws[:, i], rho, rng)

    achieved = spearman_matrix(out)
    snapshot = CopulaSnapshot(
        k=k,
        target=target,
        achieved=achieved.tolist(),
        fro_err=float(np.linalg.norm(achieved - working, "fro")),
        repaired=repaired,
    )
    return out, snapshot
