"""Diagnostic histograms for selected muons.

`HistogramRegistry` holds fixed-binning 1D/2D histograms addressed by
`"<folder>/<name>"` paths. `MuonQA` books and fills the per-category set
(`MFTMCHMID/` for global muons, `MCHMID/` for standalone muons).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from .kinematics import matched_leg_deltas, sigma_dca_xy
from .models import ForwardTrackType, MuonRecord

Axis = tuple[int, float, float]  # (n_bins, low, high)

CM_TO_UM = 1e4


@dataclass
class Histogram:
    """Fixed-binning histogram in one or two dimensions; out-of-range fills are dropped."""

    name: str
    title: str
    edges: tuple[np.ndarray, ...]
    counts: np.ndarray = field(init=False)

    def __post_init__(self) -> None:
        self.counts = np.zeros(tuple(len(e) - 1 for e in self.edges), dtype=float)

    @classmethod
    def from_axes(cls, name: str, title: str, axes: tuple[Axis, ...]) -> "Histogram":
        if len(axes) not in (1, 2):
            raise ValueError("Only 1D and 2D histograms are supported.")
        edges = tuple(np.linspace(low, high, n + 1) for n, low, high in axes)
        return cls(name=name, title=title, edges=edges)

    @property
    def ndim(self) -> int:
        return len(self.edges)

    @property
    def entries(self) -> float:
        return float(self.counts.sum())

    def fill(self, *values: float, weight: float = 1.0) -> None:
        if len(values) != self.ndim:
            raise ValueError(f"Histogram '{self.name}' expects {self.ndim} value(s), got {len(values)}.")
        index: list[int] = []
        for value, edges in zip(values, self.edges, strict=True):
            if not math.isfinite(value) or value < edges[0] or value >= edges[-1]:
                return
            index.append(int(np.searchsorted(edges, value, side="right")) - 1)
        self.counts[tuple(index)] += weight

    def clone(self, name: str) -> "Histogram":
        return Histogram(name=name, title=self.title, edges=tuple(e.copy() for e in self.edges))


class HistogramRegistry:
    """Named collection of histograms."""

    def __init__(self) -> None:
        self._histograms: dict[str, Histogram] = {}

    def add(self, name: str, title: str, axes: tuple[Axis, ...]) -> Histogram:
        if name in self._histograms:
            raise ValueError(f"Histogram '{name}' already exists.")
        hist = Histogram.from_axes(name, title, axes)
        self._histograms[name] = hist
        return hist

    def add_clone(self, src_prefix: str, dst_prefix: str) -> None:
        """Copy the binning of every histogram under `src_prefix` to `dst_prefix`."""
        for name in [n for n in self._histograms if n.startswith(src_prefix)]:
            new_name = dst_prefix + name[len(src_prefix):]
            if new_name not in self._histograms:
                self._histograms[new_name] = self._histograms[name].clone(new_name)

    def fill(self, name: str, *values: float) -> None:
        self.get(name).fill(*values)

    def get(self, name: str) -> Histogram:
        try:
            return self._histograms[name]
        except KeyError as exc:
            raise KeyError(f"Unknown histogram '{name}'.") from exc

    def names(self) -> list[str]:
        return sorted(self._histograms)

    def __contains__(self, name: str) -> bool:
        return name in self._histograms

    def __len__(self) -> int:
        return len(self._histograms)


MUON_TYPE_LABELS = (
    "MFT-MCH-MID (global muon)",
    "MFT-MCH-MID (global muon other match)",
    "MFT-MCH",
    "MCH-MID",
    "MCH standalone",
)

_FOLDERS = {
    ForwardTrackType.GLOBAL_MUON_TRACK: "MFTMCHMID/",
    ForwardTrackType.MUON_STANDALONE_TRACK: "MCHMID/",
}


class MuonQA:
    """Book and fill the muon QA histograms."""

    def __init__(self, registry: HistogramRegistry | None = None) -> None:
        self.registry = registry if registry is not None else HistogramRegistry()
        self._book()

    def _book(self) -> None:
        reg = self.registry
        reg.add("hMuonType", "muon type", ((5, -0.5, 4.5),))
        gl = "MFTMCHMID/"
        reg.add(gl + "hPt", "pT;p_{T} (GeV/c)", ((100, 0.0, 10.0),))
        reg.add(gl + "hEtaPhi", "eta vs. phi", ((180, 0.0, 2 * math.pi), (60, -5.0, -2.0)))
        reg.add(gl + "hEtaPhi_MatchedMCHMID", "eta vs. phi", ((180, 0.0, 2 * math.pi), (60, -5.0, -2.0)))
        reg.add(gl + "hDeltaPt_Pt", "dpT/pT vs. pT", ((100, 0.0, 10.0), (200, -0.5, 0.5)))
        reg.add(gl + "hDeltaEta_Pt", "deta vs. pT", ((100, 0.0, 10.0), (200, -0.5, 0.5)))
        reg.add(gl + "hDeltaPhi_Pt", "dphi vs. pT", ((100, 0.0, 10.0), (200, -0.5, 0.5)))
        reg.add(gl + "hSign", "sign", ((3, -1.5, 1.5),))
        reg.add(gl + "hNclusters", "Nclusters", ((21, -0.5, 20.5),))
        reg.add(gl + "hNclustersMFT", "Nclusters MFT", ((11, -0.5, 10.5),))
        reg.add(gl + "hRatAbsorberEnd", "R at absorber end (cm)", ((100, 0.0, 100.0),))
        reg.add(gl + "hPDCA_Rabs", "pDCA vs. Rabs", ((100, 0.0, 100.0), (100, 0.0, 1000.0)))
        reg.add(gl + "hChi2", "chi2/ndf", ((100, 0.0, 10.0),))
        reg.add(gl + "hChi2MFT", "chi2 MFT/ndf", ((100, 0.0, 10.0),))
        reg.add(gl + "hChi2MatchMCHMID", "chi2 match MCH-MID", ((100, 0.0, 100.0),))
        reg.add(gl + "hChi2MatchMCHMFT", "chi2 match MCH-MFT", ((100, 0.0, 100.0),))
        reg.add(gl + "hDCAxy2D", "DCA x vs. y (cm)", ((200, -1.0, 1.0), (200, -1.0, 1.0)))
        reg.add(gl + "hDCAxy2DinSigma", "DCA x vs. y (sigma)", ((200, -10.0, 10.0), (200, -10.0, 10.0)))
        reg.add(gl + "hDCAxy", "DCAxy (cm)", ((100, 0.0, 1.0),))
        reg.add(gl + "hDCAxyinSigma", "DCAxy (sigma)", ((100, 0.0, 10.0),))
        reg.add_clone(gl, "MCHMID/")
        # Standalone DCA resolutions are ~1000x worse; separate binning.
        for folder, high in ((gl, 500.0), ("MCHMID/", 5e5)):
            reg.add(folder + "hDCAxResolutionvsPt", "DCA_x resolution (um) vs. pT", ((100, 0.0, 10.0), (500, 0.0, high)))
            reg.add(folder + "hDCAyResolutionvsPt", "DCA_y resolution (um) vs. pT", ((100, 0.0, 10.0), (500, 0.0, high)))
            reg.add(folder + "hDCAxyResolutionvsPt", "DCA_xy resolution (um) vs. pT", ((100, 0.0, 10.0), (500, 0.0, high)))

    def fill(self, muon: MuonRecord, dca_in_sigma: float, chi2_per_ndf: float) -> None:
        """Fill all histograms of the muon's category."""
        reg = self.registry
        reg.fill("hMuonType", float(int(muon.track_type)))
        folder = _FOLDERS.get(muon.track_type)
        if folder is None:
            return
        dpt, deta, dphi = matched_leg_deltas(
            muon.pt, muon.eta, muon.phi,
            muon.pt_matched_mchmid, muon.eta_matched_mchmid, muon.phi_matched_mchmid,
        )
        dca_xy = math.hypot(muon.dca_x, muon.dca_y)
        sigma_x = math.sqrt(max(muon.cxx_at_dca, 0.0))
        sigma_y = math.sqrt(max(muon.cyy_at_dca, 0.0))
        reg.fill(folder + "hPt", muon.pt)
        reg.fill(folder + "hEtaPhi", muon.phi, muon.eta)
        reg.fill(folder + "hEtaPhi_MatchedMCHMID", muon.phi_matched_mchmid, muon.eta_matched_mchmid)
        reg.fill(folder + "hDeltaPt_Pt", muon.pt, dpt)
        reg.fill(folder + "hDeltaEta_Pt", muon.pt, deta)
        reg.fill(folder + "hDeltaPhi_Pt", muon.pt, dphi)
        reg.fill(folder + "hSign", float(muon.sign))
        reg.fill(folder + "hNclusters", float(muon.n_clusters))
        reg.fill(folder + "hNclustersMFT", float(muon.n_clusters_mft))
        reg.fill(folder + "hPDCA_Rabs", muon.r_at_absorber_end, muon.p_dca)
        reg.fill(folder + "hRatAbsorberEnd", muon.r_at_absorber_end)
        reg.fill(folder + "hChi2", chi2_per_ndf)
        reg.fill(folder + "hChi2MFT", muon.chi2_mft)
        reg.fill(folder + "hChi2MatchMCHMID", muon.chi2_match_mchmid)
        reg.fill(folder + "hChi2MatchMCHMFT", muon.chi2_match_mchmft)
        reg.fill(folder + "hDCAxy2D", muon.dca_x, muon.dca_y)
        if sigma_x > 0.0 and sigma_y > 0.0:
            reg.fill(folder + "hDCAxy2DinSigma", muon.dca_x / sigma_x, muon.dca_y / sigma_y)
        reg.fill(folder + "hDCAxy", dca_xy)
        reg.fill(folder + "hDCAxyinSigma", dca_in_sigma)
        reg.fill(folder + "hDCAxResolutionvsPt", muon.pt, sigma_x * CM_TO_UM)
        reg.fill(folder + "hDCAyResolutionvsPt", muon.pt, sigma_y * CM_TO_UM)
        reg.fill(folder + "hDCAxyResolutionvsPt", muon.pt, sigma_dca_xy(dca_xy, dca_in_sigma) * CM_TO_UM)
