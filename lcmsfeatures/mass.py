"""Charge/mass conversion and mass tolerance handling.

Features carry both an m/z value and a neutral monoisotopic mass. The two
are tied together by the charge state:

    mass = (mz - PROTON_MASS) * z          for z > 0
    mass = (mz + PROTON_MASS) * |z|        for z < 0 (deprotonated ions)
    mass = 0                               for z == 0 (charge unknown)

Scalar functions are plain Python for use on single features, the array
versions are Numba kernels for whole feature columns.
"""

from enum import Enum

import numpy as np
from numba import njit

from lcmsfeatures.constants import PROTON_MASS


class ToleranceType(Enum):
    """How a mass tolerance value is interpreted."""
    ABSOLUTE = "da"
    PPM = "ppm"

    @classmethod
    def parse(cls, value: str) -> 'ToleranceType':
        """Parse 'da'/'absolute' or 'ppm' (case-insensitive)."""
        key = value.strip().lower()
        if key in ("da", "absolute", "abs"):
            return cls.ABSOLUTE
        if key == "ppm":
            return cls.PPM
        raise ValueError(f"Unknown mass tolerance type: {value!r}")


def convert_mz_to_mass(mz: float, charge: int) -> float:
    """Convert m/z to neutral mass.

    Parameters
    ----------
    mz : float
        Observed m/z
    charge : int
        Signed charge state, 0 if unknown

    Returns
    -------
    mass : float
        Neutral mass in Da (0 for unknown charge)
    """
    if charge > 0:
        return max(0.0, (mz - PROTON_MASS) * charge)
    if charge == 0:
        return 0.0
    return (mz + PROTON_MASS) * -charge


def convert_mass_to_mz(mass: float, charge: int) -> float:
    """Convert neutral mass to m/z (inverse of convert_mz_to_mass).

    Parameters
    ----------
    mass : float
        Neutral mass in Da
    charge : int
        Signed charge state, 0 if unknown

    Returns
    -------
    mz : float
        m/z value (0 for unknown charge)
    """
    if charge > 0:
        return max(0.0, mass / charge + PROTON_MASS)
    if charge == 0:
        return 0.0
    return mass / -charge - PROTON_MASS


@njit
def convert_mz_to_mass_array(mzs: np.ndarray, charges: np.ndarray) -> np.ndarray:
    """Vectorized convert_mz_to_mass (numba version)."""
    n = len(mzs)
    masses = np.zeros(n, dtype=np.float64)
    for i in range(n):
        z = charges[i]
        if z > 0:
            masses[i] = max(0.0, (mzs[i] - 1.007276466622) * z)  # PROTON_MASS
        elif z < 0:
            masses[i] = (mzs[i] + 1.007276466622) * -z
    return masses


@njit
def convert_mass_to_mz_array(masses: np.ndarray, charges: np.ndarray) -> np.ndarray:
    """Vectorized convert_mass_to_mz (numba version)."""
    n = len(masses)
    mzs = np.zeros(n, dtype=np.float64)
    for i in range(n):
        z = charges[i]
        if z > 0:
            mzs[i] = max(0.0, masses[i] / z + 1.007276466622)  # PROTON_MASS
        elif z < 0:
            mzs[i] = masses[i] / -z - 1.007276466622
    return mzs


def calculate_absolute_delta_mass(
    center_mass: float,
    delta_mass: float,
    tolerance_type: ToleranceType
) -> float:
    """Convert a mass tolerance to Daltons at a given mass.

    Args:
        center_mass: Mass the tolerance is centered on
        delta_mass: Tolerance value (Da or ppm)
        tolerance_type: Interpretation of delta_mass

    Returns:
        Tolerance in Da
    """
    if tolerance_type == ToleranceType.PPM:
        return delta_mass * center_mass / 1e6
    return delta_mass


def ppm_difference(observed: float, reference: float) -> float:
    """Mass error of observed relative to reference, in ppm."""
    return (observed - reference) / reference * 1e6
