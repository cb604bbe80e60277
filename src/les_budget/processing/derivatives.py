"""
Finite-Difference Operators

Vertical derivatives on the stretched grid and horizontal differences on the
uniform grid, for both 1D mean profiles and 3D fields.

Mean profiles only exist on the interior levels, so their derivatives switch
to one-sided differences at the bottom and top levels. 3D fields carry
ghost levels and use centred differences everywhere.
"""

from typing import Union
import numpy as np

from ..core.exceptions import ExtentMismatchError, check_vertical_level

# ============================================================================
# Profile Derivatives
# ============================================================================

def _nonuniform_centred(f_below, f_level, f_above, h_below, h_above):
    """
    Second-order centred first derivative on a non-uniform grid.

    Exact for quadratics; reduces to (f_above - f_below) / 2h when uniform.
    """
    return (
        h_below**2 * f_above
        - h_above**2 * f_below
        + (h_above**2 - h_below**2) * f_level
    ) / (h_below * h_above * (h_below + h_above))


def _validate_profile(profile, z) -> tuple:
    profile = np.asarray(profile, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)
    if profile.ndim != 1 or z.ndim != 1 or profile.shape != z.shape:
        raise ExtentMismatchError("profile levels", z.shape, profile.shape)
    if profile.shape[0] < 2:
        raise ExtentMismatchError("profile levels", "at least 2 levels", profile.shape)
    return profile, z


def vertical_gradient(profile: np.ndarray, z: np.ndarray) -> np.ndarray:
    """
    Vertical derivative of a profile at its own levels.

    Centred (non-uniform, second order) at inner levels, one-sided at the
    bottom and top levels. Never reads outside the profile.

    Args:
        profile: Values at heights z
        z: Strictly increasing heights [m]

    Returns:
        np.ndarray: d(profile)/dz at every level
    """
    f, z = _validate_profile(profile, z)
    grad = np.empty_like(f)

    grad[0] = (f[1] - f[0]) / (z[1] - z[0])
    grad[-1] = (f[-1] - f[-2]) / (z[-1] - z[-2])

    if f.shape[0] > 2:
        grad[1:-1] = _nonuniform_centred(
            f[:-2], f[1:-1], f[2:],
            z[1:-1] - z[:-2], z[2:] - z[1:-1]
        )
    return grad


def vertical_gradient_at(profile: np.ndarray, z: np.ndarray, level: int) -> float:
    """
    Vertical derivative of a profile at a single level.

    Raises:
        VerticalBoundsError: If level is outside the profile
    """
    f, z = _validate_profile(profile, z)
    k = check_vertical_level(level, f.shape[0])
    n = f.shape[0]

    if k == 0:
        return float((f[1] - f[0]) / (z[1] - z[0]))
    if k == n - 1:
        return float((f[-1] - f[-2]) / (z[-1] - z[-2]))
    return float(_nonuniform_centred(f[k - 1], f[k], f[k + 1], z[k] - z[k - 1], z[k + 1] - z[k]))

# ============================================================================
# Face / Centre Operators (leading axis is vertical)
# ============================================================================

def centres_to_faces(values: np.ndarray) -> np.ndarray:
    """
    Move cell-centre values to the n + 1 faces bounding them.

    Inner faces average the two adjacent cells, the bottom and top faces take
    the value of the adjacent interior cell.
    """
    values = np.asarray(values, dtype=np.float64)
    faces = np.empty((values.shape[0] + 1,) + values.shape[1:])
    faces[1:-1] = 0.5 * (values[:-1] + values[1:])
    faces[0] = values[0]
    faces[-1] = values[-1]
    return faces


def face_divergence(flux: np.ndarray, dz: np.ndarray) -> np.ndarray:
    """
    Flux divergence at cell centres from fluxes on the n + 1 bounding faces.

    Telescoping: sum(div * dz) == flux[-1] - flux[0].
    """
    flux = np.asarray(flux, dtype=np.float64)
    dz = np.asarray(dz, dtype=np.float64)
    if flux.shape[0] != dz.shape[0] + 1:
        raise ExtentMismatchError("face flux levels", (dz.shape[0] + 1,), flux.shape)
    dz = dz.reshape((-1,) + (1,) * (flux.ndim - 1))
    return (flux[1:] - flux[:-1]) / dz


def face_gradient(values: np.ndarray, dzh: np.ndarray) -> np.ndarray:
    """
    Vertical gradient of cell-centre values on the n + 1 bounding faces.

    Inner faces use the compact difference, the bottom and top faces repeat
    the nearest inner gradient (one-sided).
    """
    values = np.asarray(values, dtype=np.float64)
    dzh = np.asarray(dzh, dtype=np.float64)
    n = values.shape[0]
    if dzh.shape[0] != n + 1:
        raise ExtentMismatchError("face spacing dzh", (n + 1,), dzh.shape)
    if n < 2:
        raise ExtentMismatchError("profile levels", "at least 2 levels", values.shape)

    grad = np.empty((n + 1,) + values.shape[1:])
    grad[1:-1] = (values[1:] - values[:-1]) / dzh[1:-1].reshape((-1,) + (1,) * (values.ndim - 1))
    grad[0] = grad[1]
    grad[-1] = grad[-2]
    return grad

# ============================================================================
# 3D Field Differences
# ============================================================================

def _axis_slices(ndim: int, axis: int, start: int, stop: Union[int, None]) -> tuple:
    index = [slice(None)] * ndim
    index[axis] = slice(start, stop)
    return tuple(index)


def staggered_difference(values: np.ndarray, spacing: Union[float, np.ndarray], axis: int) -> np.ndarray:
    """
    Compact difference (a[i+1] - a[i]) / spacing along axis.

    ``spacing`` is a scalar or, for the vertical axis, one value per output level.
    """
    values = np.asarray(values, dtype=np.float64)
    diff = values[_axis_slices(values.ndim, axis, 1, None)] - values[_axis_slices(values.ndim, axis, 0, -1)]
    spacing = np.asarray(spacing, dtype=np.float64)
    if spacing.ndim == 1:
        shape = [1] * values.ndim
        shape[axis] = -1
        spacing = spacing.reshape(shape)
    return diff / spacing


def centred_difference(values: np.ndarray, spacing: float, axis: int) -> np.ndarray:
    """Centred difference (a[i+1] - a[i-1]) / (2 * spacing) on a uniform axis."""
    values = np.asarray(values, dtype=np.float64)
    upper = values[_axis_slices(values.ndim, axis, 2, None)]
    lower = values[_axis_slices(values.ndim, axis, 0, -2)]
    return (upper - lower) / (2.0 * spacing)


def vertical_centred_difference(values: np.ndarray, z: np.ndarray) -> np.ndarray:
    """
    Centred vertical derivative of a 3D array extended by one level on each side.

    Args:
        values: Array of shape (n + 2, ny, nx)
        z: Heights of those n + 2 levels

    Returns:
        np.ndarray: Derivative at the n inner levels
    """
    values = np.asarray(values, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)
    if values.shape[0] != z.shape[0]:
        raise ExtentMismatchError("vertical extent", z.shape, values.shape)
    h_below = (z[1:-1] - z[:-2])[:, None, None]
    h_above = (z[2:] - z[1:-1])[:, None, None]
    return _nonuniform_centred(values[:-2], values[1:-1], values[2:], h_below, h_above)


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'vertical_gradient',
    'vertical_gradient_at',
    'centres_to_faces',
    'face_divergence',
    'face_gradient',
    'staggered_difference',
    'centred_difference',
    'vertical_centred_difference',
]
