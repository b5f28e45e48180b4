"""Per-track muon record builder and batch driver."""

from __future__ import annotations

from collections import Counter

from .ambiguity import associate_ambiguous_muons, associate_same_mft
from .calibration import CalibrationContext
from .kinematics import (
    bring_to_02pi,
    dca_components,
    dca_xy_in_sigma,
    p_dca,
    pt_from_p_eta,
)
from .logger import logger
from .models import (
    Collision,
    EventBatch,
    ForwardTrackType,
    FwdTrack,
    MFTTrack,
    MuonCuts,
    MuonRecord,
    MuonRecordCovariance,
    ProcessMode,
    SelectionStatus,
    SkimResult,
)
from .propagation import MuonPropagator, PropagationPoint
from .qa import MuonQA
from .selection import GlobalMuonCandidate, MuonSelector, classify_candidate

MUON_CATEGORIES = (ForwardTrackType.GLOBAL_MUON_TRACK, ForwardTrackType.MUON_STANDALONE_TRACK)


class PrimaryMuonSkimmer:
    """Select forward muons per collision and build their output records.

    One instance processes one batch at a time; `process` resets the output
    streams before emitting.
    """

    def __init__(
        self,
        context: CalibrationContext,
        cuts: MuonCuts | None = None,
        refit_global_muon: bool = True,
        fill_qa_histograms: bool = False,
        propagator: MuonPropagator | None = None,
    ):
        self.context = context
        self.selector = MuonSelector(cuts or MuonCuts())
        self.refit_global_muon = refit_global_muon
        self.propagator = propagator or MuonPropagator(context)
        self.qa = MuonQA() if fill_qa_histograms else None
        self._fwdtracks: dict[int, FwdTrack] = {}
        self._mft_tracks: dict[int, MFTTrack] = {}
        self._muons: list[MuonRecord] = []
        self._covariances: list[MuonRecordCovariance] = []

    def process(
        self,
        batch: EventBatch,
        mode: ProcessMode = ProcessMode.SA,
        trigger_filtered: bool = False,
        mc_truth: bool = False,
    ) -> SkimResult:
        """Run the skimmer over one batch and resolve the sibling indices.

        Workflow:
        1. Bind the calibration of each collision's run.
        2. Skip unselected (or untriggered / truth-less) collisions.
        3. Build records for the collision's tracks (own or associated).
        4. After the whole batch is emitted, compute both sibling indices.
        """
        if trigger_filtered and mc_truth:
            raise ValueError("Trigger-filtered processing is not available with MC truth.")
        mode = ProcessMode(mode)
        self._fwdtracks = {t.fwdtrack_id: t for t in batch.fwdtracks}
        self._mft_tracks = {t.mft_track_id: t for t in batch.mft_tracks}
        self._muons = []
        self._covariances = []

        if mode is ProcessMode.TTCA:
            tracks_per_collision = self._associated_tracks(batch)
            pairs = {(a.collision_id, a.fwdtrack_id) for a in batch.associations}
            n_assoc = Counter(fwdtrack_id for _, fwdtrack_id in pairs)
        else:
            tracks_per_collision = self._own_tracks(batch)
            n_assoc = Counter()

        for collision in batch.collisions:
            self.context.bind(collision.run_number)
            if not collision.is_selected:
                continue
            if trigger_filtered and collision.swt_alias_raw == 0:
                continue
            if mc_truth and collision.mc_collision_id is None:
                continue
            for track in tracks_per_collision.get(collision.collision_id, []):
                if mc_truth and track.mc_particle_id is None:
                    continue
                self.fill_track(collision, track, is_ambiguous=n_assoc[track.fwdtrack_id] > 1)

        muons = list(self._muons)
        logger.info(
            "Processed %d collisions (%s): %d muon records",
            len(batch.collisions),
            mode.value,
            len(muons),
        )
        return SkimResult(
            muons=muons,
            covariances=list(self._covariances),
            ambiguous_muon_ids=associate_ambiguous_muons(muons),
            same_mft_muon_ids=associate_same_mft(muons),
            qa=self.qa.registry if self.qa is not None else None,
        )

    def fill_track(self, collision: Collision, track: FwdTrack, is_ambiguous: bool) -> MuonRecord | None:
        """Select one track at one collision; emit and return its record if accepted."""
        candidate = classify_candidate(track, self._fwdtracks, self._mft_tracks)
        if candidate is None:
            return None
        if not self.selector.passes_quality_guards(candidate):
            return None

        at_vertex = self.propagator.propagate(track, collision, PropagationPoint.VERTEX)
        pt = at_vertex.pt
        eta = at_vertex.eta
        phi = bring_to_02pi(at_vertex.phi)

        at_dca = self.propagator.propagate(track, collision, PropagationPoint.DCA)
        cxx = at_dca.sigma2_x
        cyy = at_dca.sigma2_y
        cxy = at_dca.sigma_xy
        dca_x, dca_y, dca_xy = dca_components(at_dca, collision)
        dca_in_sigma = dca_xy_in_sigma(dca_x, dca_y, cxx, cyy, cxy)

        pdca = p_dca(track.state.p, dca_xy)
        r_abs = track.r_at_absorber_end
        pt_matched, eta_matched, phi_matched = pt, eta, phi
        n_clusters_mft = 0
        chi2_mft = 0.0
        mft_flags = 0
        mft_id = track.match_mft_track_id
        mch_id = track.match_mch_track_id

        if isinstance(candidate, GlobalMuonCandidate):
            if not self.selector.passes_global_early_cuts(candidate, dca_xy):
                return None
            mch_leg = candidate.mch_leg
            mft_leg = candidate.mft_leg
            n_clusters_mft = mft_leg.n_clusters
            chi2_mft = mft_leg.chi2
            mft_flags = mft_leg.cluster_sizes_and_track_flags

            mch_at_vertex = self.propagator.propagate(mch_leg, collision, PropagationPoint.VERTEX)
            pt_matched = mch_at_vertex.pt
            eta_matched = mch_at_vertex.eta
            phi_matched = bring_to_02pi(mch_at_vertex.phi)

            mch_at_dca = self.propagator.propagate(mch_leg, collision, PropagationPoint.DCA)
            _, _, mch_dca_xy = dca_components(mch_at_dca, collision)
            pdca = p_dca(mch_leg.state.p, mch_dca_xy)

            if self.refit_global_muon:
                eta = mft_leg.eta
                phi = bring_to_02pi(mft_leg.phi)
                pt = pt_from_p_eta(mch_at_vertex.p, eta)
        else:
            at_rabs = self.propagator.propagate(track, collision, PropagationPoint.ABSORBER_END)
            r_abs = (at_rabs.x * at_rabs.x + at_rabs.y * at_rabs.y) ** 0.5

        chi2_per_ndf = candidate.chi2_per_ndf
        status = self.selector.status(pt, eta, r_abs, pdca, chi2_per_ndf, track.track_type, dca_xy)
        if status is SelectionStatus.REJECTED:
            logger.debug(
                "fwdtrack %d at collision %d rejected (pt=%.3f eta=%.3f rabs=%.2f pdca=%.2f)",
                track.fwdtrack_id,
                collision.collision_id,
                pt,
                eta,
                r_abs,
                pdca,
            )
            return None

        muon = MuonRecord(
            muon_id=len(self._muons),
            collision_id=collision.collision_id,
            fwdtrack_id=track.fwdtrack_id,
            mfttrack_id=mft_id,
            mchtrack_id=mch_id,
            track_type=track.track_type,
            pt=pt,
            eta=eta,
            phi=phi,
            sign=track.state.sign,
            dca_x=dca_x,
            dca_y=dca_y,
            cxx_at_dca=cxx,
            cyy_at_dca=cyy,
            cxy_at_dca=cxy,
            pt_matched_mchmid=pt_matched,
            eta_matched_mchmid=eta_matched,
            phi_matched_mchmid=phi_matched,
            n_clusters=track.n_clusters,
            n_clusters_mft=n_clusters_mft,
            p_dca=pdca,
            r_at_absorber_end=r_abs,
            chi2=track.chi2,
            chi2_match_mchmid=track.chi2_match_mchmid,
            chi2_match_mchmft=track.chi2_match_mchmft,
            mch_bitmap=track.mch_bitmap,
            mid_bitmap=track.mid_bitmap,
            mid_boards=track.mid_boards,
            mft_cluster_sizes_and_track_flags=mft_flags,
            chi2_mft=chi2_mft,
            is_associated_to_mpc=track.collision_id == collision.collision_id,
            is_ambiguous=is_ambiguous,
        )
        self._muons.append(muon)
        self._covariances.append(MuonRecordCovariance.from_matrix(at_vertex.cov5))
        if self.qa is not None:
            self.qa.fill(muon, dca_in_sigma, chi2_per_ndf)
        return muon

    def _own_tracks(self, batch: EventBatch) -> dict[int, list[FwdTrack]]:
        """Group muon-category tracks by their own (best) collision."""
        out: dict[int, list[FwdTrack]] = {}
        for track in batch.fwdtracks:
            if track.track_type in MUON_CATEGORIES:
                out.setdefault(track.collision_id, []).append(track)
        return out

    def _associated_tracks(self, batch: EventBatch) -> dict[int, list[FwdTrack]]:
        """Group muon-category tracks by collision following the association table.

        Each `(collision_id, fwdtrack_id)` pair may appear only once.
        """
        out: dict[int, list[FwdTrack]] = {}
        seen: set[tuple[int, int]] = set()
        for assoc in batch.associations:
            pair = (assoc.collision_id, assoc.fwdtrack_id)
            if pair in seen:
                raise ValueError(
                    f"Duplicate association of fwdtrack {assoc.fwdtrack_id} to collision {assoc.collision_id}."
                )
            seen.add(pair)
            try:
                track = self._fwdtracks[assoc.fwdtrack_id]
            except KeyError as exc:
                raise ValueError(
                    f"Association references unknown fwdtrack {assoc.fwdtrack_id}."
                ) from exc
            if track.track_type in MUON_CATEGORIES:
                out.setdefault(assoc.collision_id, []).append(track)
        return out
