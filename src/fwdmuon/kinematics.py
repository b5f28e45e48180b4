"""Derived quantities of propagated muon tracks (angles, DCA, pDCA, chi2/ndf)."""

from __future__ import annotations

import math

from .models import Collision, FwdTrackState

DCA_SIGMA_UNDEFINED = 999.0
TWO_PI = 2.0 * math.pi


def bring_to_02pi(phi: float) -> float:
    """Normalize an azimuth into [0, 2*pi)."""
    out = math.fmod(phi, TWO_PI)
    if out < 0.0:
        out += TWO_PI
    # fmod of a tiny negative angle can round back up to 2*pi
    return 0.0 if out >= TWO_PI else out


def bring_to_pm_pi(dphi: float) -> float:
    """Normalize an azimuth difference into (-pi, pi]."""
    out = bring_to_02pi(dphi)
    if out > math.pi:
        out -= TWO_PI
    return out


def dca_components(state_at_dca: FwdTrackState, collision: Collision) -> tuple[float, float, float]:
    """Return `(dcaX, dcaY, dcaXY)` of a track at the DCA plane w.r.t. the vertex."""
    dca_x = state_at_dca.x - collision.x
    dca_y = state_at_dca.y - collision.y
    return dca_x, dca_y, math.sqrt(dca_x * dca_x + dca_y * dca_y)


def dca_xy_in_sigma(dca_x: float, dca_y: float, cxx: float, cyy: float, cxy: float) -> float:
    """DCA significance using the inverse of the 2x2 position covariance.

    A negative determinant marks an unreliable covariance and yields the
    `DCA_SIGMA_UNDEFINED` sentinel.
    """
    det = cxx * cyy - cxy * cxy
    if det < 0.0:
        return DCA_SIGMA_UNDEFINED
    num = abs(dca_x * dca_x * cyy + dca_y * dca_y * cxx - 2.0 * dca_x * dca_y * cxy)
    if det == 0.0:
        return 0.0 if num == 0.0 else math.inf
    return math.sqrt(num / det / 2.0)


def sigma_dca_xy(dca_xy: float, dca_in_sigma: float) -> float:
    """Implied 1-sigma DCA magnitude."""
    if dca_in_sigma == 0.0:
        return 0.0
    return dca_xy / dca_in_sigma


def p_dca(p: float, dca_xy: float) -> float:
    """Momentum times DCA."""
    return p * dca_xy


def global_ndf(n_clusters_mch: int, n_clusters_mft: int) -> int:
    """Degrees of freedom of the MCH-MFT matched fit."""
    return 2 * (n_clusters_mch + n_clusters_mft) - 5


def pt_from_p_eta(p: float, eta: float) -> float:
    return p * math.sin(2.0 * math.atan(math.exp(-eta)))


def matched_leg_deltas(
    pt: float,
    eta: float,
    phi: float,
    pt_matched: float,
    eta_matched: float,
    phi_matched: float,
) -> tuple[float, float, float]:
    """Return `(dpt/pt, deta, dphi)` of the matched MCH-MID leg w.r.t. the muon."""
    dpt = (pt_matched - pt) / pt if pt != 0.0 else 0.0
    return dpt, eta_matched - eta, bring_to_pm_pi(phi_matched - phi)
