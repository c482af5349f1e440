import pytest
import numpy as np
from retina_core.dependence import (
    apply_copula,
    apply_rank_correlation,
    is_positive_definite,
    nearest_pd,
    spearman_matrix,
    spearman_rho,
    validate_copula_matrix,
)
from retina_core.errors import ConfigurationError


@pytest.fixture
def samples():
    rng = np.random.default_rng(99)
    return rng.normal(size=5_000), rng.normal(size=5_000)


def test_spearman_of_monotone_pair():
    a = np.arange(10.0)
    assert spearman_rho(a, a**3) == pytest.approx(1.0)
    assert spearman_rho(a, -a) == pytest.approx(-1.0)


def test_spearman_constant_is_zero():
    assert spearman_rho(np.arange(5.0), np.ones(5)) == 0.0
    assert spearman_rho(np.array([1.0]), np.array([2.0])) == 0.0


def test_rank_correlation_direction(samples):
    a, b = samples
    _, rho_pos = apply_rank_correlation(a, b, 0.7, np.random.default_rng(1))
    _, rho_neg = apply_rank_correlation(a, b, -0.7, np.random.default_rng(1))
    _, rho_zero = apply_rank_correlation(a, b, 0.0, np.random.default_rng(1))

    assert rho_pos > 0.5
    assert rho_neg < -0.5
    assert abs(rho_zero) < 0.1


def test_rank_correlation_draws_from_b(samples):
    a, b = samples
    b_corr, _ = apply_rank_correlation(a, b, 0.5, np.random.default_rng(3))
    assert b_corr.shape == b.shape
    assert np.all(np.isin(b_corr, b))


def test_rank_correlation_deterministic(samples):
    a, b = samples
    x, _ = apply_rank_correlation(a, b, 0.4, np.random.default_rng(8))
    y, _ = apply_rank_correlation(a, b, 0.4, np.random.default_rng(8))
    np.testing.assert_array_equal(x, y)


def test_rank_correlation_bounds(samples):
    a, b = samples
    with pytest.raises(ConfigurationError):
        apply_rank_correlation(a, b, 0.91, np.random.default_rng(0))


# ---------- copula ----------

TARGET = np.array([[1.0, 0.6, 0.3], [0.6, 1.0, 0.5], [0.3, 0.5, 1.0]])
NOT_PD = np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])


@pytest.fixture
def block():
    return np.random.default_rng(5).normal(size=(4_000, 3))


@pytest.mark.parametrize(
    "matrix, k",
    [
        ([[1.0, 0.5], [0.5, 1.0]], 3),
        ([[1.0, 0.5], [0.4, 1.0]], 2),
        ([[0.9, 0.5], [0.5, 1.0]], 2),
        ([[1.0, 1.5], [1.5, 1.0]], 2),
        ([[1.0, float("nan")], [float("nan"), 1.0]], 2),
        ([[1.0, 0.5], [0.5]], 2),
        ("identity", 2),
    ],
)
def test_copula_matrix_validation(matrix, k):
    with pytest.raises(ConfigurationError):
        validate_copula_matrix(matrix, k)


def test_copula_matrix_accepted():
    m = validate_copula_matrix(TARGET.tolist(), 3)
    np.testing.assert_array_equal(m, TARGET)
    assert validate_copula_matrix([], 0).shape == (0, 0)


def test_positive_definite_check():
    assert is_positive_definite(TARGET)
    assert not is_positive_definite(NOT_PD)


def test_nearest_pd_is_a_correlation_matrix():
    fixed = nearest_pd(NOT_PD)
    np.testing.assert_allclose(np.diag(fixed), 1.0)
    np.testing.assert_allclose(fixed, fixed.T)
    assert np.linalg.eigvalsh(fixed).min() > -1e-10


def test_spearman_matrix(block):
    m = spearman_matrix(block)
    assert m.shape == (3, 3)
    np.testing.assert_array_equal(np.diag(m), 1.0)
    np.testing.assert_array_equal(m, m.T)
    assert m[0, 1] == spearman_rho(block[:, 0], block[:, 1])


def test_apply_copula(block):
    out, snap = apply_copula(block, TARGET, True, np.random.default_rng(2))

    # first column untouched, the rest only re-paired
    np.testing.assert_array_equal(out[:, 0], block[:, 0])
    for j in range(3):
        np.testing.assert_array_equal(np.sort(out[:, j]), np.sort(block[:, j]))

    assert snap.k == 3
    assert snap.target == TARGET.tolist()
    assert not snap.repaired
    achieved = np.array(snap.achieved)
    assert achieved[0, 1] > 0.5
    assert achieved[1, 2] > 0.5
    assert snap.fro_err == pytest.approx(np.linalg.norm(achieved - TARGET, "fro"))


def test_apply_copula_deterministic(block):
    x, sx = apply_copula(block, TARGET, True, np.random.default_rng(4))
    y, sy = apply_copula(block, TARGET, True, np.random.default_rng(4))
    np.testing.assert_array_equal(x, y)
    assert sx == sy


def test_apply_copula_identity_keeps_draws(block):
    out, snap = apply_copula(block, np.eye(3), True, np.random.default_rng(0))
    np.testing.assert_array_equal(out, block)
    assert abs(np.array(snap.achieved)[0, 1]) < 0.1


def test_apply_copula_not_positive_definite(block):
    _, snap = apply_copula(block, NOT_PD, True, np.random.default_rng(0))
    assert snap.repaired
    assert snap.target == NOT_PD.tolist()

    _, snap = apply_copula(block, NOT_PD, False, np.random.default_rng(0))
    assert not snap.repaired
    assert snap.fro_err == pytest.approx(
        np.linalg.norm(np.array(snap.achieved) - NOT_PD, "fro")
    )
