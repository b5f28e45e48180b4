"""Candidate classification and muon selection cuts.

Candidates are dispatched once into a closed set of variants:
`GlobalMuonCandidate` (MFT-MCH-MID, carries both matched legs) and
`StandaloneMuonCandidate` (MCH-MID). Every other category is rejected.
All cuts are plain predicates; a failed cut is a `False` return.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping, Union

from .kinematics import global_ndf
from .logger import logger
from .models import ForwardTrackType, FwdTrack, MFTTrack, MuonCuts, SelectionStatus


@dataclass(frozen=True)
class GlobalMuonCandidate:
    """Global muon with its MCH-MID and MFT legs resolved."""

    track: FwdTrack
    mch_leg: FwdTrack
    mft_leg: MFTTrack

    @property
    def ndf(self) -> int:
        return global_ndf(self.mch_leg.n_clusters, self.mft_leg.n_clusters)

    @property
    def chi2_per_ndf(self) -> float:
        ndf = self.ndf
        if ndf <= 0:
            return math.inf
        return self.track.chi2 / ndf


@dataclass(frozen=True)
class StandaloneMuonCandidate:
    """MCH-MID muon; its chi2 is already normalized upstream."""

    track: FwdTrack

    @property
    def chi2_per_ndf(self) -> float:
        return self.track.chi2


MuonCandidate = Union[GlobalMuonCandidate, StandaloneMuonCandidate]


def classify_candidate(
    track: FwdTrack,
    fwdtracks: Mapping[int, FwdTrack],
    mft_tracks: Mapping[int, MFTTrack],
) -> MuonCandidate | None:
    """Dispatch a track into its candidate variant, or None if not a muon category."""
    if track.track_type == ForwardTrackType.MUON_STANDALONE_TRACK:
        return StandaloneMuonCandidate(track)
    if track.track_type != ForwardTrackType.GLOBAL_MUON_TRACK:
        return None
    try:
        mch_leg = fwdtracks[track.match_mch_track_id]
    except KeyError as exc:
        raise ValueError(
            f"Global muon {track.fwdtrack_id} references unknown MCH-MID track "
            f"{track.match_mch_track_id}."
        ) from exc
    try:
        mft_leg = mft_tracks[track.match_mft_track_id]
    except KeyError as exc:
        raise ValueError(
            f"Global muon {track.fwdtrack_id} references unknown MFT track "
            f"{track.match_mft_track_id}."
        ) from exc
    return GlobalMuonCandidate(track=track, mch_leg=mch_leg, mft_leg=mft_leg)


@dataclass(frozen=True)
class MuonSelector:
    """Apply `MuonCuts` to muon candidates."""

    cuts: MuonCuts = field(default_factory=MuonCuts)

    def passes_quality_guards(self, candidate: MuonCandidate) -> bool:
        """Cuts on fit qualities, evaluated before any propagation."""
        track = candidate.track
        if (
            isinstance(candidate, GlobalMuonCandidate)
            and track.chi2_match_mchmft > self.cuts.max_matching_chi2_mchmft
        ):
            # Several MFT matches of one MCH-MID track are all kept; the
            # analysis picks the best one.
            logger.debug("fwdtrack %d: MCH-MFT matching chi2 too large", track.fwdtrack_id)
            return False
        if track.chi2_match_mchmid < 0.0 or track.chi2 < 0.0:
            logger.debug("fwdtrack %d: negative fit quality", track.fwdtrack_id)
            return False
        return True

    def passes_global_early_cuts(self, candidate: GlobalMuonCandidate, dca_xy: float) -> bool:
        """Global-muon cuts that avoid propagating the matched MCH-MID leg."""
        cuts = self.cuts
        r_abs = candidate.track.r_at_absorber_end
        if r_abs < cuts.min_rabs_gl or cuts.max_rabs < r_abs:
            return False
        if cuts.max_dca_xy < dca_xy:
            return False
        if cuts.max_chi2_gl < candidate.chi2_per_ndf:
            return False
        return True

    def is_selected(
        self,
        pt: float,
        eta: float,
        r_at_absorber_end: float,
        pdca: float,
        chi2_per_ndf: float,
        track_type: ForwardTrackType,
        dca_xy: float,
    ) -> bool:
        """Kinematic and quality selection shared by both muon categories."""
        cuts = self.cuts
        if pt < cuts.min_pt or cuts.max_pt < pt:
            return False
        if r_at_absorber_end < cuts.min_rabs or cuts.max_rabs < r_at_absorber_end:
            return False
        max_pdca = cuts.max_pdca_small_r if r_at_absorber_end < cuts.mid_rabs else cuts.max_pdca_large_r
        if pdca > max_pdca:
            return False

        if track_type == ForwardTrackType.GLOBAL_MUON_TRACK:
            if eta < cuts.min_eta_gl or cuts.max_eta_gl < eta:
                return False
            if cuts.max_dca_xy < dca_xy:
                return False
            if cuts.max_chi2_gl < chi2_per_ndf:
                return False
            if r_at_absorber_end < cuts.min_rabs_gl or cuts.max_rabs < r_at_absorber_end:
                return False
        elif track_type == ForwardTrackType.MUON_STANDALONE_TRACK:
            if eta < cuts.min_eta_sa or cuts.max_eta_sa < eta:
                return False
            if cuts.max_chi2_sa < chi2_per_ndf:
                return False
        else:
            return False
        return True

    def status(
        self,
        pt: float,
        eta: float,
        r_at_absorber_end: float,
        pdca: float,
        chi2_per_ndf: float,
        track_type: ForwardTrackType,
        dca_xy: float,
    ) -> SelectionStatus:
        """Final selection state of a fully propagated candidate."""
        if not self.is_selected(pt, eta, r_at_absorber_end, pdca, chi2_per_ndf, track_type, dca_xy):
            return SelectionStatus.REJECTED
        if track_type == ForwardTrackType.GLOBAL_MUON_TRACK:
            return SelectionStatus.ACCEPTED_GLOBAL
        return SelectionStatus.ACCEPTED_STANDALONE
