"""Core data models used by the forward-muon skimmer.

This module defines:
- track-category and processing enums (`ForwardTrackType`, `ProcessMode`, ...)
- immutable input records (`FwdTrack`, `MFTTrack`, `Collision`, `TrackAssociation`)
- the forward-track parameter state (`FwdTrackState`)
- output records (`MuonRecord`, `MuonRecordCovariance`, `SkimResult`)
- configurable selection controls (`MuonCuts`, `SkimmerConfig`).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .qa import HistogramRegistry

Matrix5x5 = tuple[
    tuple[float, float, float, float, float],
    tuple[float, float, float, float, float],
    tuple[float, float, float, float, float],
    tuple[float, float, float, float, float],
    tuple[float, float, float, float, float],
]


class ForwardTrackType(IntEnum):
    """Forward-track categories as written by the reconstruction."""

    GLOBAL_MUON_TRACK = 0  # MFT-MCH-MID
    GLOBAL_MUON_TRACK_OTHER_MATCH = 1
    GLOBAL_FORWARD_TRACK = 2  # MFT-MCH
    MUON_STANDALONE_TRACK = 3  # MCH-MID
    MCH_STANDALONE_TRACK = 4

    @property
    def is_global(self) -> bool:
        """True for categories carrying an MFT leg (parameters at the MFT)."""
        return self <= ForwardTrackType.GLOBAL_FORWARD_TRACK


class SelectionStatus(Enum):
    """Outcome of the candidate selection."""

    REJECTED = "rejected"
    ACCEPTED_GLOBAL = "accepted_global"
    ACCEPTED_STANDALONE = "accepted_standalone"


class ProcessMode(str, Enum):
    """How tracks are attached to collisions."""

    SA = "sa"  # one collision per track, from the track itself
    TTCA = "ttca"  # track-to-collision association table


@dataclass(frozen=True)
class FwdTrackState:
    """Forward-track parameters at a reference z plane.

    The state is parameterized as `(x, y, phi, tanl, invqpt)` with
    `tanl = pz/pt` and `invqpt = q/pt`; `cov5` follows the same order.
    Units are cm and GeV/c.
    """

    z: float
    x: float
    y: float
    phi: float
    tanl: float
    invqpt: float
    cov5: Matrix5x5

    @property
    def pt(self) -> float:
        """Transverse momentum."""
        if self.invqpt == 0.0:
            return math.inf
        return 1.0 / abs(self.invqpt)

    @property
    def p(self) -> float:
        """Total momentum magnitude."""
        return self.pt * math.sqrt(1.0 + self.tanl * self.tanl)

    @property
    def eta(self) -> float:
        """Pseudorapidity from the dip angle."""
        theta = 0.5 * math.pi - math.atan(self.tanl)
        return -math.log(math.tan(0.5 * theta))

    @property
    def sign(self) -> int:
        """Charge sign (+1/-1) from the curvature parameter."""
        return 1 if self.invqpt >= 0.0 else -1

    @property
    def sigma2_x(self) -> float:
        return self.cov5[0][0]

    @property
    def sigma2_y(self) -> float:
        return self.cov5[1][1]

    @property
    def sigma_xy(self) -> float:
        return self.cov5[0][1]


@dataclass(frozen=True)
class FwdTrack:
    """One reconstructed forward track (MCH-based, optionally MFT-matched)."""

    fwdtrack_id: int
    track_type: ForwardTrackType
    state: FwdTrackState
    collision_id: int = -1  # best-associated collision
    n_clusters: int = 0
    chi2: float = 0.0
    chi2_match_mchmid: float = 0.0
    chi2_match_mchmft: float = 0.0
    r_at_absorber_end: float = 0.0
    match_mch_track_id: int = -1
    match_mft_track_id: int = -1
    mch_bitmap: int = 0
    mid_bitmap: int = 0
    mid_boards: int = 0
    mc_particle_id: int | None = None


@dataclass(frozen=True)
class MFTTrack:
    """Standalone MFT track referenced by global muons."""

    mft_track_id: int
    n_clusters: int
    chi2: float
    eta: float
    phi: float
    cluster_sizes_and_track_flags: int = 0
    mc_particle_id: int | None = None


@dataclass(frozen=True)
class Collision:
    """Reconstructed collision (primary-vertex) candidate.

    `timestamp` (ms) is kept for provenance only; calibration
    is resolved from the start-of-run timestamp of `run_number`.
    """

    collision_id: int
    x: float
    y: float
    z: float
    run_number: int
    timestamp: int = 0
    is_selected: bool = True
    swt_alias_raw: int = 0  # software-trigger alias bitmask
    mc_collision_id: int | None = None


@dataclass(frozen=True)
class TrackAssociation:
    """One entry of the track-to-collision association table."""

    collision_id: int
    fwdtrack_id: int


@dataclass(frozen=True)
class EventBatch:
    """All inputs of one processing batch (run / file segment)."""

    collisions: tuple[Collision, ...]
    fwdtracks: tuple[FwdTrack, ...]
    mft_tracks: tuple[MFTTrack, ...] = ()
    associations: tuple[TrackAssociation, ...] = ()


@dataclass(frozen=True)
class MuonRecord:
    """One selected muon at one collision, as written to the output table."""

    muon_id: int
    collision_id: int
    fwdtrack_id: int
    mfttrack_id: int
    mchtrack_id: int
    track_type: ForwardTrackType
    pt: float
    eta: float
    phi: float
    sign: int
    dca_x: float
    dca_y: float
    cxx_at_dca: float
    cyy_at_dca: float
    cxy_at_dca: float
    pt_matched_mchmid: float
    eta_matched_mchmid: float
    phi_matched_mchmid: float
    n_clusters: int
    n_clusters_mft: int
    p_dca: float
    r_at_absorber_end: float
    chi2: float
    chi2_match_mchmid: float
    chi2_match_mchmft: float
    mch_bitmap: int
    mid_bitmap: int
    mid_boards: int
    mft_cluster_sizes_and_track_flags: int
    chi2_mft: float
    is_associated_to_mpc: bool
    is_ambiguous: bool


@dataclass(frozen=True)
class MuonRecordCovariance:
    """Lower triangle of the 5x5 covariance at the vertex.

    Parameter order is `(x, y, phi, tanl, invqpt)`.
    """

    c_xx: float
    c_yx: float
    c_yy: float
    c_phix: float
    c_phiy: float
    c_phiphi: float
    c_tglx: float
    c_tgly: float
    c_tglphi: float
    c_tgltgl: float
    c_1ptx: float
    c_1pty: float
    c_1ptphi: float
    c_1pttgl: float
    c_1pt1pt: float

    @classmethod
    def from_matrix(cls, cov: Matrix5x5) -> "MuonRecordCovariance":
        """Pack the independent entries of a symmetric 5x5 matrix."""
        return cls(
            cov[0][0],
            cov[1][0], cov[1][1],
            cov[2][0], cov[2][1], cov[2][2],
            cov[3][0], cov[3][1], cov[3][2], cov[3][3],
            cov[4][0], cov[4][1], cov[4][2], cov[4][3], cov[4][4],
        )


@dataclass(frozen=True)
class MuonCuts:
    """Selection thresholds for forward muons (cm, GeV/c)."""

    min_pt: float = 0.2
    max_pt: float = 1e10
    min_eta_sa: float = -4.0
    max_eta_sa: float = -2.5
    min_eta_gl: float = -3.6
    max_eta_gl: float = -2.5
    min_rabs_gl: float = 27.6  # R at absorber end for eta = -3.6
    min_rabs: float = 17.6
    mid_rabs: float = 26.5  # pDCA split point
    max_rabs: float = 89.5
    max_dca_xy: float = 1e10
    max_pdca_large_r: float = 324.0
    max_pdca_small_r: float = 594.0
    max_matching_chi2_mchmft: float = 50.0
    max_chi2_sa: float = 1e6
    max_chi2_gl: float = 1e6


@dataclass(frozen=True)
class SkimmerConfig:
    """Run configuration of the skimmer."""

    cuts: MuonCuts = field(default_factory=MuonCuts)
    refit_global_muon: bool = True
    fill_qa_histograms: bool = False
    ccdb_url: str = "calibration.json"
    grpmag_path: str = "GLO/Config/GRPMagField"
    geo_path: str = "GLO/Config/GeometryAligned"
    mode: ProcessMode = ProcessMode.SA
    trigger_filtered: bool = False
    mc_truth: bool = False


@dataclass
class SkimResult:
    """Output streams of one batch; all sequences share the record order."""

    muons: list[MuonRecord] = field(default_factory=list)
    covariances: list[MuonRecordCovariance] = field(default_factory=list)
    ambiguous_muon_ids: list[tuple[int, ...]] = field(default_factory=list)
    same_mft_muon_ids: list[tuple[int, ...]] = field(default_factory=list)
    qa: HistogramRegistry | None = None
