"""
RF measurement models used to turn readings into lateration samples.

This module implements:
- the log-distance path-loss model (RSSI from distance and back), with the
  free-space (Friis) reference distance c / (4πf) so that the transmitted
  power can be used directly as the reference power;
- first-order propagation of transmitted power, received power and
  path-loss exponent uncertainties into a distance standard deviation;
- projection of a source position covariance onto the line of sight.
"""

from typing import Optional

import numpy as np

# Physical constants
SPEED_OF_LIGHT = 299792458.0  # m/s

DEFAULT_FREQUENCY = 2.4e9  # Hz, 2.4 GHz Wi-Fi band
DEFAULT_PATH_LOSS_EXPONENT = 2.0  # free space

_LN10 = np.log(10.0)


def reference_distance(frequency: float = DEFAULT_FREQUENCY) -> float:
    """
    Free-space reference distance k = c / (4πf).

    With this reference distance the Friis equation reads
        Pr = Pt - 10*η*log10(d / k)
    so the transmitted power plays the role of the reference power.

    Args:
        frequency: Carrier frequency in Hz.

    Returns:
        Reference distance in meters (about 1 cm at 2.4 GHz).
    """
    if frequency <= 0:
        raise ValueError("Frequency must be positive")
    return SPEED_OF_LIGHT / (4.0 * np.pi * frequency)


def rss_pathloss(
    p_ref_dbm: float,
    distance: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    d_ref: float = 1.0,
) -> float:
    """
    Compute RSS using the log-distance path-loss model.

        p_R = p_ref - 10*η*log10(d / d_ref)

    Args:
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        distance: Distance from source to device in meters.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0 (free space).
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Received signal strength in dBm.

    Example:
        >>> rss = rss_pathloss(p_ref_dbm=-40.0, distance=10.0, path_loss_exp=2.5)
        >>> print(f"RSS: {rss:.2f} dBm")
        RSS: -65.00 dBm
    """
    if distance <= 0:
        raise ValueError("Distance must be positive")

    return p_ref_dbm - 10 * path_loss_exp * np.log10(distance / d_ref)


def rss_to_distance(
    rss_dbm: float,
    p_ref_dbm: float,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    d_ref: float = 1.0,
) -> float:
    """
    Estimate distance from RSS using the inverse path-loss model.

        d = d_ref * 10^((p_ref - p_R) / (10*η))

    Args:
        rss_dbm: Received signal strength in dBm.
        p_ref_dbm: Reference RSS at distance d_ref in dBm.
        path_loss_exp: Path-loss exponent η. Defaults to 2.0.
        d_ref: Reference distance in meters. Defaults to 1.0.

    Returns:
        Estimated distance in meters.

    Example:
        >>> distance = rss_to_distance(rss_dbm=-65.0, p_ref_dbm=-40.0, path_loss_exp=2.5)
        >>> print(f"Distance: {distance:.2f} m")
        Distance: 10.00 m
    """
    if path_loss_exp <= 0:
        raise ValueError("Path-loss exponent must be positive")

    exponent = (p_ref_dbm - rss_dbm) / (10 * path_loss_exp)
    return d_ref * (10**exponent)


def received_power(
    transmitted_power_dbm: float,
    distance: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """Received power in dBm at ``distance`` from a source (Friis model)."""
    return rss_pathloss(
        transmitted_power_dbm,
        distance,
        path_loss_exp=path_loss_exp,
        d_ref=reference_distance(frequency),
    )


def rssi_to_distance(
    rssi_dbm: float,
    transmitted_power_dbm: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
) -> float:
    """Distance in meters implied by a received power (inverse Friis model)."""
    return rss_to_distance(
        rssi_dbm,
        transmitted_power_dbm,
        path_loss_exp=path_loss_exp,
        d_ref=reference_distance(frequency),
    )


def rssi_distance_standard_deviation(
    rssi_dbm: float,
    transmitted_power_dbm: float,
    frequency: float = DEFAULT_FREQUENCY,
    path_loss_exp: float = DEFAULT_PATH_LOSS_EXPONENT,
    transmitted_power_std: Optional[float] = None,
    rssi_std: Optional[float] = None,
    path_loss_exp_std: Optional[float] = None,
) -> Optional[float]:
    """
    Standard deviation of an RSSI-derived distance by first-order propagation.

    With d = k * 10^((Pt - Pr) / (10η)) the partial derivatives are:
        ∂d/∂Pt =  d * ln(10) / (10η)
        ∂d/∂Pr = -d * ln(10) / (10η)
        ∂d/∂η  = -d * ln(10) * (Pt - Pr) / (10η²)
    and, assuming independent errors,
        σ_d² = Σ (∂d/∂θ)² σ_θ²

    Args:
        rssi_dbm: Received power Pr in dBm.
        transmitted_power_dbm: Transmitted power Pt in dBm.
        frequency: Carrier frequency in Hz.
        path_loss_exp: Path-loss exponent η.
        transmitted_power_std: Standard deviation of Pt in dB, or None.
        rssi_std: Standard deviation of Pr in dB, or None.
        path_loss_exp_std: Standard deviation of η, or None.

    Returns:
        Distance standard deviation in meters, or None when none of the
        uncertainties is known.
    """
    if transmitted_power_std is None and rssi_std is None and path_loss_exp_std is None:
        return None

    distance = rssi_to_distance(rssi_dbm, transmitted_power_dbm, frequency, path_loss_exp)
    g = distance * _LN10 / (10.0 * path_loss_exp)

    variance = 0.0
    if transmitted_power_std is not None:
        variance += (g * transmitted_power_std) ** 2
    if rssi_std is not None:
        variance += (g * rssi_std) ** 2
    if path_loss_exp_std is not None:
        d_eta = -g * (transmitted_power_dbm - rssi_dbm) / path_loss_exp
        variance += (d_eta * path_loss_exp_std) ** 2

    return float(np.sqrt(variance))


def projected_position_variance(
    source_position: np.ndarray,
    position_covariance: np.ndarray,
    reference_point: np.ndarray,
) -> float:
    """
    Variance of a source position along the line of sight.

        σ² = uᵀ Σ u,   u = (p_source - p_ref) / ‖p_source - p_ref‖

    When the reference point coincides with the source the direction is
    undefined and the largest eigenvalue of Σ is returned instead.

    Args:
        source_position: Source position (d,).
        position_covariance: Source position covariance (d × d).
        reference_point: Point the distance is measured from (d,), usually
            the initial position or the centroid of the sources.

    Returns:
        Projected variance in m².
    """
    source_position = np.asarray(source_position, dtype=float)
    cov = np.asarray(position_covariance, dtype=float)
    diff = source_position - np.asarray(reference_point, dtype=float)
    norm = np.linalg.norm(diff)

    if norm < 1e-12:
        return float(np.max(np.linalg.eigvalsh(cov)))

    u = diff / norm
    return float(u @ cov @ u)
