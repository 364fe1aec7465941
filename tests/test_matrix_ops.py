# tests/test_matrix_ops.py
"""Unit tests for tracer_engine.matrix_ops.

This module verifies:
- Exchange operator and system matrix assembly (values and sparsity).
- Source vector construction.
- Implicit Euler operator construction for dense and sparse base matrices.
- factorize_operator on dense/sparse input and singular matrices.
- implicit_solve correctness, caching and dimension checks.
"""

from __future__ import annotations

import gc

import numpy as np
import pytest
from scipy.sparse import csr_matrix, issparse

from tracer_engine import matrix_ops
from tracer_engine.errors import DimensionMismatchError, SingularMatrixError
from tracer_engine.matrix_ops import (
    as_operator,
    build_exchange_operator,
    build_identity_operator,
    build_implicit_euler_operators,
    build_source_vector,
    build_system_matrix,
    clear_implicit_solver_cache,
    factorize_operator,
    implicit_solve,
)
from tracer_engine.parameters import TracerParameters

# -------------------------------------------------------------------
# Assembly
# -------------------------------------------------------------------


def test_exchange_operator_is_diagonal_on_surface(params: TracerParameters) -> None:
    """Lambda_ii = kappa/h at surface cells and 0 elsewhere."""
    mask = np.array([True, False, True])
    lam = build_exchange_operator(mask, params)

    assert issparse(lam)
    np.testing.assert_allclose(
        lam.toarray(), np.diag([params.exchange_rate, 0.0, params.exchange_rate])
    )


def test_system_matrix_matches_formula(box_model, params: TracerParameters) -> None:
    """M = T + Lambda + lambda I."""
    grid, transport = box_model
    m = build_system_matrix(transport, grid.surface_mask, params)
    lam = build_exchange_operator(grid.surface_mask, params)

    expected = transport.toarray() + lam.toarray() + params.decay_rate * np.eye(5)
    np.testing.assert_allclose(m.toarray(), expected, rtol=1e-14, atol=0.0)


def test_system_matrix_sparsity_support(box_model, params: TracerParameters) -> None:
    """nnz(T) <= nnz(M) <= nnz(T) + N."""
    grid, transport = box_model
    m = build_system_matrix(transport, grid.surface_mask, params)
    assert transport.nnz <= m.nnz <= transport.nnz + grid.n_wet


def test_system_matrix_keeps_cancelled_entries() -> None:
    """A diagonal entry that cancels to zero stays stored."""
    params = TracerParameters(decay_rate=1.0, piston_velocity=0.0)
    transport = csr_matrix(np.array([[-1.0, 0.0], [0.0, 2.0]]))
    m = build_system_matrix(transport, np.array([False, False]), params)

    assert m.nnz == 2
    np.testing.assert_allclose(m.toarray(), [[0.0, 0.0], [0.0, 3.0]])


def test_system_matrix_empty_transport_gets_full_diagonal(params: TracerParameters) -> None:
    """With T = 0 the system matrix is the exchange + decay diagonal."""
    transport = csr_matrix((3, 3))
    m = build_system_matrix(transport, np.array([True, False, False]), params)

    assert m.nnz == 3
    np.testing.assert_allclose(
        m.diagonal(),
        [params.exchange_rate + params.decay_rate, params.decay_rate, params.decay_rate],
    )


def test_system_matrix_accepts_dense_transport(params: TracerParameters) -> None:
    """Dense T is converted and assembled like sparse T."""
    dense = np.array([[1.0, -1.0], [-1.0, 1.0]])
    mask = np.array([True, False])
    m_dense = build_system_matrix(dense, mask, params)
    m_sparse = build_system_matrix(csr_matrix(dense), mask, params)
    np.testing.assert_allclose(m_dense.toarray(), m_sparse.toarray())


def test_system_matrix_non_square_raises(params: TracerParameters) -> None:
    """Non-square transport operators are rejected."""
    with pytest.raises(DimensionMismatchError, match=r"\(2, 3\)"):
        build_system_matrix(np.zeros((2, 3)), np.array([True, False]), params)


def test_system_matrix_mask_length_mismatch_raises(box_model, params: TracerParameters) -> None:
    """The surface mask must have one entry per row of T."""
    _, transport = box_model
    with pytest.raises(DimensionMismatchError, match="surface_mask"):
        build_system_matrix(transport, np.ones(4, dtype=bool), params)


def test_source_vector_surface_only(params: TracerParameters) -> None:
    """s = Lambda 1 R_atm is nonzero only at surface cells."""
    mask = np.array([True, True, False])
    lam = build_exchange_operator(mask, params)

    s = build_source_vector(lam)
    np.testing.assert_allclose(s, [params.exchange_rate, params.exchange_rate, 0.0])

    s2 = build_source_vector(lam, atmospheric_reference=0.5)
    np.testing.assert_allclose(s2, 0.5 * s)


# -------------------------------------------------------------------
# Operators and factorization
# -------------------------------------------------------------------


def test_as_operator_normalizes_inputs() -> None:
    """Sparse input becomes CSR float64; lists become 2D arrays."""
    assert isinstance(as_operator(csr_matrix(np.eye(2, dtype=np.float32))), csr_matrix)
    arr = as_operator([[1, 2], [3, 4]])
    assert isinstance(arr, np.ndarray)
    assert arr.dtype == np.float64

    with pytest.raises(TypeError):
        as_operator(np.ones(3))


def test_identity_operator_dense_and_sparse() -> None:
    """Identity operators come in both storage types."""
    assert issparse(build_identity_operator(3))
    np.testing.assert_array_equal(build_identity_operator(3, sparse=False), np.eye(3))


@pytest.mark.parametrize("sparse", [False, True])
def test_implicit_euler_operators_match_formula(sparse: bool) -> None:
    """L = I - dt A and R = I."""
    a = np.array([[-2.0, 1.0], [1.0, -3.0]])
    base = csr_matrix(a) if sparse else a
    left, right = build_implicit_euler_operators(base, 0.1)

    assert issparse(left) == sparse
    left_d = left.toarray() if sparse else left
    right_d = right.toarray() if sparse else right
    np.testing.assert_allclose(left_d, np.eye(2) - 0.1 * a)
    np.testing.assert_allclose(right_d, np.eye(2))


def test_implicit_euler_operators_reject_nonfinite_scale() -> None:
    """dt must be finite."""
    with pytest.raises(ValueError, match="finite"):
        build_implicit_euler_operators(np.eye(2), float("nan"))


@pytest.mark.parametrize("sparse", [False, True])
def test_factorize_operator_solves(sparse: bool) -> None:
    """The returned callable solves op @ y = b for vector and matrix b."""
    rng = np.random.default_rng(0)
    a = rng.normal(size=(4, 4)) + 4.0 * np.eye(4)
    solve = factorize_operator(csr_matrix(a) if sparse else a)

    b = rng.normal(size=4)
    np.testing.assert_allclose(a @ solve(b), b, atol=1e-12)

    bb = rng.normal(size=(4, 3))
    np.testing.assert_allclose(a @ solve(bb), bb, atol=1e-12)


@pytest.mark.parametrize("sparse", [False, True])
def test_factorize_singular_raises(sparse: bool) -> None:
    """Singular matrices raise SingularMatrixError with the matrix size."""
    a = np.array([[1.0, 2.0], [2.0, 4.0]])
    with pytest.raises(SingularMatrixError, match=r"\(2, 2\)"):
        factorize_operator(csr_matrix(a) if sparse else a)


def test_factorize_zero_sparse_matrix_raises() -> None:
    """An all-zero sparse matrix is singular."""
    with pytest.raises(SingularMatrixError):
        factorize_operator(csr_matrix((1, 1)))


# -------------------------------------------------------------------
# Cached implicit solves
# -------------------------------------------------------------------


def test_implicit_solve_matches_direct_solve() -> None:
    """implicit_solve solves L y = R x."""
    left = csr_matrix(np.array([[3.0, 1.0], [0.0, 2.0]]))
    right = csr_matrix(np.array([[1.0, 0.0], [1.0, 1.0]]))
    x = np.array([1.0, 2.0])

    y = implicit_solve(left, right, x)
    np.testing.assert_allclose(left.toarray() @ y, right.toarray() @ x)


def test_implicit_solve_caches_factorization(monkeypatch: pytest.MonkeyPatch) -> None:
    """Repeated solves with the same operator objects factorize once."""
    calls = {"n": 0}
    original = matrix_ops.factorize_operator

    def counting(op):
        calls["n"] += 1
        return original(op)

    monkeypatch.setattr(matrix_ops, "factorize_operator", counting)

    left, right = build_implicit_euler_operators(csr_matrix(-np.eye(3)), 0.5)
    for _ in range(4):
        implicit_solve(left, right, np.ones(3))
    assert calls["n"] == 1

    clear_implicit_solver_cache()
    implicit_solve(left, right, np.ones(3))
    assert calls["n"] == 2


def test_implicit_solver_evicted_with_operators() -> None:
    """A cached factorization is dropped once its operators are released."""
    left, right = build_implicit_euler_operators(np.diag([-1.0, -2.0]), 0.5)
    implicit_solve(left, right, np.ones(2))
    assert matrix_ops.implicit_solver_cache_size() == 1

    del left
    gc.collect()
    assert matrix_ops.implicit_solver_cache_size() == 0


def test_dense_factorization_leaves_nonfinite_rhs_to_caller() -> None:
    """A NaN right-hand side yields NaN output on a dense operator."""
    solve = factorize_operator(np.array([[2.0, 0.0], [0.0, 4.0]]))
    out = solve(np.array([np.nan, 4.0]))
    assert out.shape == (2,)
    assert np.isnan(out[0])


def test_implicit_solve_rejects_bad_dimensions() -> None:
    """Mismatched operators or right-hand sides are rejected."""
    left = np.eye(3)
    with pytest.raises(DimensionMismatchError):
        implicit_solve(left, np.eye(2), np.ones(3))
    with pytest.raises(DimensionMismatchError):
        implicit_solve(left, np.eye(3), np.ones(2))
    with pytest.raises(ValueError, match="1D or 2D"):
        implicit_solve(left, np.eye(3), np.ones((3, 1, 1)))
