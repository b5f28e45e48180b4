"""Magnetic-field map built from the run's field calibration object.

The map combines the central solenoid (uniform `Bz`) and the muon-arm dipole
(`By` with a Gaussian z profile). Units: cm and kGauss.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

NOMINAL_L3_CURRENT = 30000.0  # A
NOMINAL_DIPOLE_CURRENT = 6000.0  # A
NOMINAL_SOLENOID_BZ = 5.0  # kG
NOMINAL_DIPOLE_BY = 6.7  # kG


@dataclass(frozen=True)
class FieldMap:
    """Analytic field model: solenoid plus dipole.

    `Bz = solenoid_bz` for `z > -solenoid_half_length`, and
    `By = dipole_by * exp(-0.5 * ((z - dipole_z_center) / dipole_z_width)^2)`.
    """

    solenoid_bz: float = 0.0
    dipole_by: float = 0.0
    solenoid_half_length: float = 600.0
    dipole_z_center: float = -975.0
    dipole_z_width: float = 250.0

    @classmethod
    def from_grp(cls, l3_current: float, dipole_current: float) -> "FieldMap":
        """Scale nominal fields by the magnet currents of the run."""
        return cls(
            solenoid_bz=NOMINAL_SOLENOID_BZ * l3_current / NOMINAL_L3_CURRENT,
            dipole_by=-NOMINAL_DIPOLE_BY * dipole_current / NOMINAL_DIPOLE_CURRENT,
        )

    @property
    def is_null(self) -> bool:
        return self.solenoid_bz == 0.0 and self.dipole_by == 0.0

    def field_at(self, x: np.ndarray, y: np.ndarray, z: float) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return `(Bx, By, Bz)` for arrays of transverse positions at one z."""
        zeros = np.zeros_like(x)
        bz = zeros + (self.solenoid_bz if z > -self.solenoid_half_length else 0.0)
        z_rel = (z - self.dipole_z_center) / self.dipole_z_width
        by = zeros + self.dipole_by * np.exp(-0.5 * z_rel * z_rel)
        return zeros, by, bz
