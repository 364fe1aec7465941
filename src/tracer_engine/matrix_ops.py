"""
Operator assembly and cached linear solves for tracer transport.

This module provides the sparse-matrix building blocks used by the steady-state
and time-stepping solvers:

- Assembly of the air-sea exchange operator and the steady-state system matrix
  M = T + Lambda + lambda I from a transport operator T.
- The source vector s = Lambda (R_atm 1).
- Implicit Euler operator pairs (L, R) for a time-scaled linear operator.
- Reusable factorizations and cached implicit solves for repeated linear systems
  with fixed operators.

Design notes:
    * Sparse paths rely on SciPy's SuperLU factorization; dense ndarray inputs are
      factorized with LAPACK LU.
    * Backend-friendly surface: public APIs operate on plain ndarrays or CSR
      matrices and avoid leaking SciPy-specific solver objects.
    * Cache semantics: implicit solver caching is keyed by (id(left_op),
      id(right_op)). For caching to be effective, operator objects must be
      constructed once and reused.
    * Structure: the system matrix keeps every stored entry of T and adds a full
      explicit diagonal, so its sparsity pattern is fixed for a given T
      regardless of parameter values.
"""

from __future__ import annotations

import warnings
import weakref
from typing import TYPE_CHECKING, TypeAlias, cast

import numpy as np
from numpy.typing import DTypeLike, NDArray
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve
from scipy.sparse import coo_matrix, csr_matrix, diags, identity, issparse
from scipy.sparse.linalg import splu

from .errors import raise_dimension_mismatch, raise_singular_matrix

if TYPE_CHECKING:
    from collections.abc import Callable

    from .parameters import TracerParameters


# =============================================================================
# Public operator types (backend-friendly)
# =============================================================================

DenseOperator: TypeAlias = NDArray[np.floating]
SparseOperator: TypeAlias = csr_matrix
Operator: TypeAlias = DenseOperator | SparseOperator
LinearSolver: TypeAlias = "Callable[[NDArray[np.floating]], NDArray[np.floating]]"


# =============================================================================
# Implicit solver cache
# =============================================================================

# Cache for implicit solvers (factorized L, prepped R)
# key = (id(L), id(R)) -> (meta, solver, finalizers)
# Entries are evicted once L or R is garbage-collected; meta guards against
# in-place edits of the operators.
_SolverMeta = tuple[tuple[int, int], tuple[int, int], str, str, bool, int, int]
_IMPLICIT_SOLVER_CACHE: dict[
    tuple[int, int],
    tuple[_SolverMeta, "LinearSolver", tuple[weakref.finalize, ...]],
] = {}


# =============================================================================
# Error message constants
# =============================================================================

_OPERATOR_SCALE_ERROR = "scale must be a finite float; got {scale}"
_OPERATOR_TYPE_ERROR = "Operator must be a dense ndarray or a sparse matrix; got {typ}"
_X_NDIM_ERROR = "x must be 1D or 2D; got ndim={ndim}"
_NONFINITE_SOLUTION_DETAIL = "solution contains non-finite values"


# =============================================================================
# Type helpers
# =============================================================================


def as_operator(op: object) -> Operator:
    """
    Normalize a matrix-like object to a dense ndarray or CSR matrix.

    Args:
        op: Dense array-like or SciPy sparse matrix/array.

    Raises:
        TypeError: If op is neither sparse nor convertible to a 2D float array.

    Returns:
        CSR matrix for sparse input, float ndarray otherwise.
    """
    if issparse(op):
        return csr_matrix(op, dtype=np.float64)
    try:
        arr = np.asarray(op, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise TypeError(_OPERATOR_TYPE_ERROR.format(typ=type(op))) from exc
    if arr.ndim != 2:
        raise TypeError(_OPERATOR_TYPE_ERROR.format(typ=type(op)))
    return cast("DenseOperator", arr)


def _require_square(op: Operator, *, name: str) -> int:
    shape = cast("tuple[int, int]", op.shape)
    if shape[0] != shape[1]:
        raise_dimension_mismatch(name=name, expected="a square matrix", got=shape)
    return int(shape[0])


# =============================================================================
# Operator assembly: exchange operator, system matrix, source vector
# =============================================================================


def _surface_vector(surface_mask: NDArray[np.bool_] | object, n: int) -> NDArray:
    mask = np.asarray(surface_mask, dtype=bool)
    if mask.shape != (n,):
        raise_dimension_mismatch(name="surface_mask", expected=(n,), got=mask.shape)
    return mask


def build_exchange_operator(
    surface_mask: NDArray[np.bool_],
    params: TracerParameters,
    *,
    dtype: DTypeLike = np.float64,
) -> csr_matrix:
    """
    Build the diagonal air-sea exchange operator Lambda.

    Args:
        surface_mask: Boolean vector, True at surface (gas-exchanging) cells.
        params: Tracer parameters providing piston velocity and layer thickness.
        dtype: Floating dtype of the operator.

    Returns:
        Diagonal CSR matrix with Lambda_ii = kappa/h at surface cells, 0 elsewhere.
    """
    mask = np.asarray(surface_mask, dtype=bool)
    if mask.ndim != 1:
        raise_dimension_mismatch(name="surface_mask", expected="a 1D vector", got=mask.shape)
    values = np.where(mask, params.exchange_rate, 0.0).astype(np.dtype(dtype))
    return cast("csr_matrix", diags(values, 0, format="csr"))


def build_system_matrix(
    transport: Operator,
    surface_mask: NDArray[np.bool_],
    params: TracerParameters,
) -> csr_matrix:
    """
    Assemble the steady-state system matrix M = T + Lambda + lambda I.

    Every stored entry of T is kept (no pruning of cancellations) and a full
    explicit diagonal is added, so nnz(T) <= nnz(M) <= nnz(T) + N.

    Args:
        transport: Transport operator T, shape (N, N), sparse or dense.
        surface_mask: Boolean vector of length N, True at surface cells.
        params: Tracer parameters.

    Returns:
        System matrix M as a CSR matrix.
    """
    t_op = as_operator(transport)
    n = _require_square(t_op, name="transport")
    mask = _surface_vector(surface_mask, n)

    diagonal = np.where(mask, params.exchange_rate, 0.0) + params.decay_rate

    t_coo = coo_matrix(t_op)
    diag_idx = np.arange(n, dtype=np.int64)
    rows = np.concatenate([t_coo.row.astype(np.int64), diag_idx])
    cols = np.concatenate([t_coo.col.astype(np.int64), diag_idx])
    data = np.concatenate([t_coo.data.astype(np.float64), diagonal])

    # COO -> CSR sums duplicates but keeps explicit zeros.
    return coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()


def build_source_vector(
    exchange_operator: Operator,
    atmospheric_reference: float = 1.0,
) -> NDArray[np.floating]:
    """
    Build the forcing vector s = Lambda (R_atm ones(N)).

    Args:
        exchange_operator: Diagonal exchange operator Lambda, shape (N, N).
        atmospheric_reference: Atmospheric tracer value R_atm.

    Returns:
        Source vector of length N.
    """
    op = as_operator(exchange_operator)
    n = _require_square(op, name="exchange_operator")
    ones = np.full(n, float(atmospheric_reference), dtype=np.float64)
    return np.asarray(op @ ones, dtype=np.float64).ravel()


# =============================================================================
# Identity and implicit Euler operators
# =============================================================================


def build_identity_operator(
    n: int,
    *,
    dtype: DTypeLike = np.float64,
    sparse: bool = True,
) -> Operator:
    """
    Build an identity operator.

    Args:
        n: Size of the identity operator (n x n).
        dtype: Floating dtype (e.g. np.float64).
        sparse: If True return a CSR matrix, otherwise a dense ndarray.

    Returns:
        Identity operator of shape (n, n).
    """
    dtype_obj = np.dtype(dtype)
    if sparse:
        return identity(n, format="csr", dtype=dtype_obj)
    return cast("DenseOperator", np.eye(n, dtype=dtype_obj))


def build_implicit_euler_operators(
    base_op: Operator,
    dt_scale: float,
) -> tuple[Operator, Operator]:
    """Build implicit Euler operators for a time-scaled linear operator.

    For y' = A y + f the implicit Euler update is solved as L @ y_next = R @ x
    with L = I - dt A and R = I, where x = y + dt f.

    Args:
        base_op: Base linear operator A.
        dt_scale: Time-step scaling factor (dt * scale).

    Raises:
        ValueError: If dt_scale is not finite.

    Returns:
        Tuple of (L, R) operators for implicit Euler scheme.
    """
    if not np.isfinite(dt_scale):
        raise ValueError(_OPERATOR_SCALE_ERROR.format(scale=dt_scale))

    n = base_op.shape[0]

    if issparse(base_op):
        base_csr = base_op.tocsr()
        identity_csr = identity(n, format="csr", dtype=base_csr.dtype)
        left_csr = (identity_csr - (dt_scale * base_csr)).tocsr()
        right_csr = identity_csr.tocsr()
        return left_csr, right_csr

    base_arr = np.asarray(base_op)
    identity_arr = np.eye(n, dtype=base_arr.dtype)
    left_arr = identity_arr - (dt_scale * base_arr)
    return cast("DenseOperator", left_arr), cast("DenseOperator", identity_arr)


# =============================================================================
# Factorizations
# =============================================================================


def _checked(
    solve: Callable[[NDArray[np.floating]], NDArray[np.floating]],
    shape: tuple[int, int],
) -> LinearSolver:
    def solver(rhs: NDArray[np.floating]) -> NDArray[np.floating]:
        out = np.asarray(solve(rhs))
        # Non-finite output from a finite right-hand side means a singular factor.
        if not np.all(np.isfinite(out)) and np.all(np.isfinite(rhs)):
            raise_singular_matrix(shape=shape, detail=_NONFINITE_SOLUTION_DETAIL)
        return out

    return solver


def factorize_operator(op: Operator) -> LinearSolver:
    """
    Factorize a square operator once and return a reusable solve callable.

    Args:
        op: Square operator (dense ndarray or sparse matrix).

    Raises:
        SingularMatrixError: If the operator is singular.

    Returns:
        Callable mapping a 1D or 2D right-hand side b to the solution of op @ y = b.
        The callable raises SingularMatrixError if a solution is non-finite.
    """
    mat = as_operator(op)
    n = _require_square(mat, name="operator")
    shape = (n, n)

    if issparse(mat):
        try:
            lu = splu(cast("csr_matrix", mat).tocsc())
        except RuntimeError as exc:
            raise_singular_matrix(shape=shape, detail=str(exc))

        def sparse_solve(rhs: NDArray[np.floating]) -> NDArray[np.floating]:
            return lu.solve(np.asarray(rhs, dtype=np.float64))

        return _checked(sparse_solve, shape)

    dense = np.asarray(mat)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LinAlgWarning)
        lu_piv = lu_factor(dense, check_finite=False)
    if np.any(np.diag(lu_piv[0]) == 0.0):
        raise_singular_matrix(shape=shape, detail="zero pivot in LU factorization")

    def dense_solve(rhs: NDArray[np.floating]) -> NDArray[np.floating]:
        return lu_solve(lu_piv, np.asarray(rhs, dtype=np.float64), check_finite=False)

    return _checked(dense_solve, shape)


# =============================================================================
# Cached implicit solves
# =============================================================================


def clear_implicit_solver_cache() -> None:
    """Clear the internal implicit solver cache."""
    for key in list(_IMPLICIT_SOLVER_CACHE):
        _evict_implicit_solver(key)


def implicit_solver_cache_size() -> int:
    """Return the number of cached implicit solvers."""
    return len(_IMPLICIT_SOLVER_CACHE)


def _evict_implicit_solver(key: tuple[int, int]) -> None:
    entry = _IMPLICIT_SOLVER_CACHE.pop(key, None)
    if entry is not None:
        for finalizer in entry[2]:
            finalizer.detach()


def _operator_meta(
    left_op: Operator,
    right_op: Operator,
) -> _SolverMeta:
    """
    Compute a metadata tuple used to validate cache hits.

    Args:
        left_op: Left operator L in the equation L @ y = R @ x.
        right_op: Right operator R in the equation L @ y = R @ x.

    Returns:
        A metadata tuple describing the operators.
    """
    l_sparse = issparse(left_op)
    r_sparse = issparse(right_op)
    l_nnz = int(left_op.nnz) if l_sparse else int(np.asarray(left_op).size)
    r_nnz = int(right_op.nnz) if r_sparse else int(np.asarray(right_op).size)
    return (
        cast("tuple[int, int]", tuple(left_op.shape)),
        cast("tuple[int, int]", tuple(right_op.shape)),
        str(left_op.dtype),
        str(right_op.dtype),
        l_sparse and r_sparse,
        l_nnz,
        r_nnz,
    )


def _validate_solve_dimensions(
    left_op: Operator,
    right_op: Operator,
    x: NDArray[np.floating],
) -> None:
    n = _require_square(left_op, name="left_op")
    m = _require_square(right_op, name="right_op")
    if n != m:
        raise_dimension_mismatch(name="right_op", expected=(n, n), got=right_op.shape)

    if x.ndim not in {1, 2}:
        raise ValueError(_X_NDIM_ERROR.format(ndim=x.ndim))

    if x.shape[0] != n:
        raise_dimension_mismatch(name="x", expected=f"leading size {n}", got=x.shape)


def _build_implicit_solver(
    left_op: Operator,
    right_op: Operator,
) -> LinearSolver:
    """
    Build a reusable implicit solver for left_op @ y = right_op @ x.

    Args:
        left_op: Left operator L in the equation L @ y = R @ x.
        right_op: Right operator R in the equation L @ y = R @ x.

    Returns:
        A callable that takes x and returns the solution y.
    """
    solve_left = factorize_operator(left_op)
    right = as_operator(right_op)

    def solver(x: NDArray[np.floating]) -> NDArray[np.floating]:
        rhs = right @ np.asarray(x, dtype=np.float64)
        return np.asarray(solve_left(np.asarray(rhs)), dtype=np.float64)

    return solver


def implicit_solve(
    left_op: Operator,
    right_op: Operator,
    x: NDArray[np.floating],
) -> NDArray[np.floating]:
    """
    Perform an implicit solve L @ y = R @ x with factorization caching.

    Args:
        left_op: Left operator L in the equation L @ y = R @ x.
        right_op: Right operator R in the equation L @ y = R @ x.
        x: 1D or 2D array representing the input vector(s).

    Returns:
        A 1D or 2D array containing the solution vector(s) y.
    """
    x_arr = np.asarray(x, dtype=np.float64)
    _validate_solve_dimensions(left_op, right_op, x_arr)

    key = (id(left_op), id(right_op))
    meta = _operator_meta(left_op, right_op)

    cached = _IMPLICIT_SOLVER_CACHE.get(key)
    if cached is not None and cached[0] == meta:
        return cached[1](x_arr)

    _evict_implicit_solver(key)
    solver = _build_implicit_solver(left_op, right_op)
    finalizers = tuple(
        weakref.finalize(op, _evict_implicit_solver, key) for op in (left_op, right_op)
    )
    _IMPLICIT_SOLVER_CACHE[key] = (meta, solver, finalizers)
    return solver(x_arr)
