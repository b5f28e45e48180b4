"""Propagation of forward-track states to the vertex, DCA and absorber-end planes.

Transport integrates the Lorentz-force equations in z with fixed-step RK4
in the slope representation `(x, y, tx, ty, q/p)`:

    dx/dz  = tx
    dy/dz  = ty
    dtx/dz = s * k * (q/p) * N * [tx*ty*Bx - (1 + tx^2)*By + ty*Bz]
    dty/dz = s * k * (q/p) * N * [(1 + ty^2)*Bx - tx*ty*By - tx*Bz]

with `N = sqrt(1 + tx^2 + ty^2)`, `s = sign(pz)` and `k = 0.299792458e-3`
GeV/(kG cm). The 5x5 covariance is carried as `J C J^T`, `J` being the
central-difference Jacobian of the transport in `(x, y, phi, tanl, invqpt)`.
Nominal and shifted states are integrated together as one numpy batch.
"""

from __future__ import annotations

import math
from enum import Enum

import numpy as np

from .calibration import CalibrationContext
from .field import FieldMap
from .models import Collision, FwdTrack, FwdTrackState

B2C = 0.299792458e-3  # GeV / (kG cm)
_REL_STEP = 1e-6


class PropagationPoint(Enum):
    """Reference surfaces a muon track can be propagated to."""

    VERTEX = "vertex"
    DCA = "dca"
    ABSORBER_END = "absorber_end"


class MuonPropagator:
    """Propagate forward tracks with the field bound in a `CalibrationContext`."""

    def __init__(self, context: CalibrationContext, step: float = 5.0):
        if step <= 0.0:
            raise ValueError("Propagation step must be positive.")
        self.context = context
        self.step = step

    def propagate(self, track: FwdTrack, collision: Collision, point: PropagationPoint) -> FwdTrackState:
        """Propagate `track` to `point` for the given collision.

        Global (MFT-matched) tracks are transported to the vertex z for both
        VERTEX and DCA. Muon-spectrometer tracks additionally get the vertex
        constraint at VERTEX, while DCA keeps the transported position.
        """
        if point is PropagationPoint.ABSORBER_END:
            z_target = self.context.geometry.z_absorber_end
        else:
            z_target = collision.z
        state = self.propagate_to_z(track.state, z_target)
        if point is PropagationPoint.VERTEX and not track.track_type.is_global:
            state = _constrain_to_vertex(state, collision)
        return state

    def propagate_to_z(self, state: FwdTrackState, z_target: float) -> FwdTrackState:
        """Transport parameters and covariance to the plane `z = z_target`."""
        if state.tanl == 0.0:
            raise ValueError("Cannot propagate a track with tanl = 0 along z.")
        field_map = self.context.field
        pz_sign = 1.0 if state.tanl > 0.0 else -1.0
        params = np.array([state.x, state.y, state.phi, state.tanl, state.invqpt], dtype=float)
        steps = _REL_STEP * np.maximum(1.0, np.abs(params))

        batch = np.tile(params, (11, 1))
        for j in range(5):
            batch[1 + 2 * j, j] += steps[j]
            batch[2 + 2 * j, j] -= steps[j]
        slopes = _to_slopes(batch)
        slopes = self._transport(slopes, state.z, z_target, field_map, pz_sign)
        moved = _to_params(slopes, pz_sign)

        jac = np.empty((5, 5))
        for j in range(5):
            diff = moved[1 + 2 * j] - moved[2 + 2 * j]
            diff[2] = (diff[2] + math.pi) % (2.0 * math.pi) - math.pi
            jac[:, j] = diff / (2.0 * steps[j])
        cov = jac @ np.asarray(state.cov5, dtype=float) @ jac.T
        cov = 0.5 * (cov + cov.T)

        x, y, phi, tanl, invqpt = moved[0]
        return FwdTrackState(
            z=z_target,
            x=float(x),
            y=float(y),
            phi=float(phi),
            tanl=float(tanl),
            invqpt=float(invqpt),
            cov5=_as_matrix(cov),
        )

    def _transport(
        self,
        slopes: np.ndarray,
        z_start: float,
        z_end: float,
        field_map: FieldMap,
        pz_sign: float,
    ) -> np.ndarray:
        """Integrate a batch of slope states from `z_start` to `z_end`."""
        dz_total = z_end - z_start
        if dz_total == 0.0:
            return slopes
        if field_map.is_null:
            out = slopes.copy()
            out[:, 0] += slopes[:, 2] * dz_total
            out[:, 1] += slopes[:, 3] * dz_total
            return out
        n_steps = max(1, math.ceil(abs(dz_total) / self.step))
        h = dz_total / n_steps
        z = z_start
        current = slopes
        for _ in range(n_steps):
            k1 = _derivatives(current, z, field_map, pz_sign)
            k2 = _derivatives(current + 0.5 * h * k1, z + 0.5 * h, field_map, pz_sign)
            k3 = _derivatives(current + 0.5 * h * k2, z + 0.5 * h, field_map, pz_sign)
            k4 = _derivatives(current + h * k3, z + h, field_map, pz_sign)
            current = current + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)
            z += h
        return current


def _derivatives(states: np.ndarray, z: float, field_map: FieldMap, pz_sign: float) -> np.ndarray:
    """Right-hand side of the transport equations for a batch of states."""
    x, y, tx, ty, qop = states.T
    bx, by, bz = field_map.field_at(x, y, z)
    norm = np.sqrt(1.0 + tx * tx + ty * ty)
    kappa = pz_sign * B2C * qop * norm
    out = np.empty_like(states)
    out[:, 0] = tx
    out[:, 1] = ty
    out[:, 2] = kappa * (tx * ty * bx - (1.0 + tx * tx) * by + ty * bz)
    out[:, 3] = kappa * ((1.0 + ty * ty) * bx - tx * ty * by - tx * bz)
    out[:, 4] = 0.0
    return out


def _to_slopes(params: np.ndarray) -> np.ndarray:
    """`(x, y, phi, tanl, invqpt)` rows to `(x, y, tx, ty, q/p)` rows."""
    x, y, phi, tanl, invqpt = params.T
    out = np.empty_like(params)
    out[:, 0] = x
    out[:, 1] = y
    out[:, 2] = np.cos(phi) / tanl
    out[:, 3] = np.sin(phi) / tanl
    out[:, 4] = invqpt / np.sqrt(1.0 + tanl * tanl)
    return out


def _to_params(slopes: np.ndarray, pz_sign: float) -> np.ndarray:
    """Inverse of `_to_slopes`; the sign of pz is preserved by transport."""
    x, y, tx, ty, qop = slopes.T
    tanl = pz_sign / np.hypot(tx, ty)
    out = np.empty_like(slopes)
    out[:, 0] = x
    out[:, 1] = y
    out[:, 2] = np.arctan2(pz_sign * ty, pz_sign * tx)
    out[:, 3] = tanl
    out[:, 4] = qop * np.sqrt(1.0 + tanl * tanl)
    return out


def _constrain_to_vertex(state: FwdTrackState, collision: Collision) -> FwdTrackState:
    """Move the track position onto the vertex, keeping its momentum."""
    return FwdTrackState(
        z=state.z,
        x=collision.x,
        y=collision.y,
        phi=state.phi,
        tanl=state.tanl,
        invqpt=state.invqpt,
        cov5=state.cov5,
    )


def _as_matrix(cov: np.ndarray):
    """Convert a numpy 5x5 array into the nested-tuple matrix type."""
    return tuple(tuple(float(v) for v in row) for row in cov)
