"""
Direct (non-robust) lateration solvers.

Given sample positions p_i (the located radio sources) and measured distances
d_i, lateration finds the device position x such that ‖x - p_i‖ ≈ d_i.

Three solvers are provided:

Linear inhomogeneous solver:
    Subtracting the equation of a reference sample (index 0) from the rest
    removes the quadratic term ‖x‖²:
        2 (p_i - p_0)ᵀ x = ‖p_i‖² - ‖p_0‖² - d_i² + d_0²
    which is solved in the least-squares sense (scipy.linalg.lstsq).

Linear homogeneous solver:
    Each sample gives one row of a homogeneous system A v = 0 with
        a_i = [1, -2 p_iᵀ, ‖p_i‖² - d_i²],   v = [‖x‖², xᵀ, 1]ᵀ
    The solution is the right singular vector of the smallest singular value
    (scipy.linalg.svd), normalized so its last element is 1.

Non-linear solver:
    Weighted Gauss-Newton or Levenberg-Marquardt on the range model
    h_i(x) = ‖x - p_i‖ with weights 1/σ_i². The covariance of the estimate is
    (JᵀWJ)⁻¹ when standard deviations are provided.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy import linalg

from radiopos.errors import PositionEstimationError


@dataclass
class LaterationResult:
    """Result container for a non-linear lateration solve.

    Attributes:
        position: Estimated position (d,).
        covariance: Covariance of the position (d × d), or None.
        iterations: Number of iterations performed.
        residuals: Final range residuals d_i - ‖x - p_i‖.
        cost: Final cost ½‖r‖²_W.
        converged: Whether the step norm fell below tolerance.
    """

    position: np.ndarray
    covariance: Optional[np.ndarray]
    iterations: int
    residuals: np.ndarray
    cost: float
    converged: bool


def _validate_samples(positions: np.ndarray, distances: np.ndarray):
    positions = np.asarray(positions, dtype=float)
    distances = np.asarray(distances, dtype=float)

    if positions.ndim != 2 or positions.shape[1] not in (2, 3):
        raise ValueError(f"positions must have shape (N, 2) or (N, 3), got {positions.shape}")
    if distances.ndim != 1 or len(distances) != len(positions):
        raise ValueError(
            f"distances must be 1D with {len(positions)} elements, got shape {distances.shape}"
        )

    dim = positions.shape[1]
    if len(positions) < dim + 1:
        raise PositionEstimationError(
            f"At least {dim + 1} samples are needed for {dim}D lateration, got {len(positions)}"
        )
    return positions, distances


def lateration_residuals(
    position: np.ndarray, positions: np.ndarray, distances: np.ndarray
) -> np.ndarray:
    """Absolute range residuals |‖x - p_i‖ - d_i| of a candidate position."""
    ranges = np.linalg.norm(np.asarray(positions, dtype=float) - position, axis=1)
    return np.abs(ranges - np.asarray(distances, dtype=float))


def linear_lateration(positions: np.ndarray, distances: np.ndarray) -> np.ndarray:
    """
    Solve lateration with the linear inhomogeneous formulation.

    Args:
        positions: Sample positions (N, d), N >= d + 1.
        distances: Measured distances (N,).

    Returns:
        Estimated position (d,).

    Raises:
        PositionEstimationError: If there are too few samples or the sample
            positions are degenerate (collinear in 2D, coplanar in 3D).

    Example:
        >>> anchors = np.array([[0, 0], [10, 0], [0, 10]], dtype=float)
        >>> ranges = np.linalg.norm(anchors - np.array([3.0, 4.0]), axis=1)
        >>> linear_lateration(anchors, ranges)
        array([3., 4.])
    """
    positions, distances = _validate_samples(positions, distances)
    dim = positions.shape[1]

    p0 = positions[0]
    A = 2.0 * (positions[1:] - p0)
    b = (
        np.sum(positions[1:] ** 2, axis=1)
        - np.sum(p0**2)
        - distances[1:] ** 2
        + distances[0] ** 2
    )

    x, _, rank, _ = linalg.lstsq(A, b)
    if rank < dim or not np.all(np.isfinite(x)):
        raise PositionEstimationError("Degenerate sample geometry for linear lateration")
    return x


def homogeneous_linear_lateration(
    positions: np.ndarray, distances: np.ndarray
) -> np.ndarray:
    """
    Solve lateration with the linear homogeneous formulation (SVD null vector).

    Args:
        positions: Sample positions (N, d), N >= d + 1.
        distances: Measured distances (N,).

    Returns:
        Estimated position (d,).

    Raises:
        PositionEstimationError: If there are too few samples or the null
            vector cannot be normalized.
    """
    positions, distances = _validate_samples(positions, distances)
    n, dim = positions.shape

    A = np.column_stack(
        [np.ones(n), -2.0 * positions, np.sum(positions**2, axis=1) - distances**2]
    )

    _, s, vt = linalg.svd(A)
    # A rank below d + 1 leaves more than one null vector
    if s.size < dim + 1 or s[dim] <= 1e-12 * max(s[0], 1.0):
        raise PositionEstimationError("Degenerate sample geometry for homogeneous lateration")

    v = vt[-1]
    if abs(v[-1]) < 1e-12:
        raise PositionEstimationError("Homogeneous lateration solution is at infinity")

    return v[1 : dim + 1] / v[-1]


def nonlinear_lateration(
    positions: np.ndarray,
    distances: np.ndarray,
    standard_deviations: Optional[np.ndarray] = None,
    initial_position: Optional[np.ndarray] = None,
    method: str = "lm",
    max_iter: int = 50,
    tol: float = 1e-10,
    mu0: float = 1e-3,
    return_covariance: bool = True,
) -> LaterationResult:
    """
    Solve lateration by weighted non-linear least squares.

    Minimizes ½ Σ w_i (d_i - ‖x - p_i‖)² with w_i = 1/σ_i².

    Gauss-Newton update:        (JᵀWJ) Δx = JᵀW r
    Levenberg-Marquardt update: (JᵀWJ + μI) Δx = JᵀW r

    Args:
        positions: Sample positions (N, d), N >= d + 1.
        distances: Measured distances (N,).
        standard_deviations: Distance standard deviations (N,). If None,
            uniform weights are used and the covariance is scaled by the
            residual variance.
        initial_position: Starting point (d,). If None, the linear solution
            is used, falling back to the centroid of the sample positions.
        method: "gn" (Gauss-Newton) or "lm" (Levenberg-Marquardt).
        max_iter: Maximum number of iterations.
        tol: Convergence tolerance on ‖Δx‖.
        mu0: Initial damping for Levenberg-Marquardt.
        return_covariance: If True, compute the covariance at the estimate.

    Returns:
        LaterationResult with the estimate and diagnostics.

    Raises:
        PositionEstimationError: If there are too few samples or the solve
            diverges.
    """
    positions, distances = _validate_samples(positions, distances)
    m, n = positions.shape

    if method not in ("gn", "lm"):
        raise ValueError(f"Unknown method '{method}'. Use 'gn' or 'lm'")

    if standard_deviations is None:
        weights = np.ones(m)
    else:
        standard_deviations = np.asarray(standard_deviations, dtype=float)
        if standard_deviations.shape != (m,):
            raise ValueError(f"standard_deviations must have shape ({m},)")
        if np.any(standard_deviations <= 0):
            raise ValueError("standard_deviations must be positive")
        weights = 1.0 / standard_deviations**2
    W = np.diag(weights)

    if initial_position is None:
        try:
            x = linear_lateration(positions, distances)
        except PositionEstimationError:
            x = positions.mean(axis=0)
    else:
        x = np.asarray(initial_position, dtype=float).copy()
        if x.shape != (n,):
            raise ValueError(f"initial_position must have shape ({n},), got {x.shape}")

    def h(x):
        return np.linalg.norm(x - positions, axis=1)

    def jacobian(x):
        diff = x - positions
        ranges = np.linalg.norm(diff, axis=1, keepdims=True)
        return diff / np.maximum(ranges, 1e-10)

    mu = mu0
    nu = 2.0
    converged = False
    iteration = 0

    for iteration in range(max_iter):
        r = distances - h(x)
        J = jacobian(x)

        JtW = J.T @ W
        JtWJ = JtW @ J
        JtWr = JtW @ r
        cost = 0.5 * r @ W @ r

        if method == "gn":
            try:
                delta_x = np.linalg.solve(JtWJ, JtWr)
            except np.linalg.LinAlgError:
                delta_x = np.linalg.lstsq(JtWJ, JtWr, rcond=None)[0]
            x = x + delta_x

        else:
            while True:
                JtWJ_damped = JtWJ + mu * np.eye(n)
                try:
                    delta_x = np.linalg.solve(JtWJ_damped, JtWr)
                except np.linalg.LinAlgError:
                    delta_x = np.linalg.lstsq(JtWJ_damped, JtWr, rcond=None)[0]

                x_new = x + delta_x
                r_new = distances - h(x_new)
                cost_new = 0.5 * r_new @ W @ r_new

                predicted_decrease = 0.5 * delta_x @ (mu * delta_x + JtWr)
                actual_decrease = cost - cost_new

                if predicted_decrease > 1e-15:
                    gain_ratio = actual_decrease / predicted_decrease
                else:
                    gain_ratio = 0.0

                if gain_ratio > 0:
                    x = x_new
                    mu = mu * max(1.0 / 3.0, 1.0 - (2.0 * gain_ratio - 1.0) ** 3)
                    nu = 2.0
                    break

                mu = mu * nu
                nu = 2.0 * nu
                if mu > 1e10:
                    delta_x = np.zeros(n)
                    break

        if not np.all(np.isfinite(x)):
            raise PositionEstimationError("Non-linear lateration diverged")

        if np.linalg.norm(delta_x) < tol:
            converged = True
            break

    r = distances - h(x)
    cost = 0.5 * r @ W @ r

    P = None
    if return_covariance:
        J = jacobian(x)
        JtWJ = J.T @ W @ J

        if standard_deviations is None:
            sigma2 = (r @ W @ r) / (m - n) if m > n else 1.0
        else:
            sigma2 = 1.0

        try:
            P = sigma2 * np.linalg.inv(JtWJ)
        except np.linalg.LinAlgError:
            P = sigma2 * np.linalg.pinv(JtWJ)

    return LaterationResult(
        position=x,
        covariance=P,
        iterations=iteration + 1,
        residuals=r,
        cost=float(cost),
        converged=converged,
    )
