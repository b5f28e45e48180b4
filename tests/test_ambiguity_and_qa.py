"""Unit tests for sibling indices and QA histograms."""

from __future__ import annotations

import math
import unittest
from dataclasses import replace

from fwdmuon import ForwardTrackType, MuonRecord, associate_ambiguous_muons, associate_same_mft
from fwdmuon.qa import HistogramRegistry, MuonQA

GL = ForwardTrackType.GLOBAL_MUON_TRACK
SA = ForwardTrackType.MUON_STANDALONE_TRACK

_BASE = MuonRecord(
    muon_id=0, collision_id=0, fwdtrack_id=0, mfttrack_id=-1, mchtrack_id=-1, track_type=SA,
    pt=1.0, eta=-3.0, phi=0.5, sign=1, dca_x=0.01, dca_y=-0.02,
    cxx_at_dca=1e-4, cyy_at_dca=1e-4, cxy_at_dca=0.0,
    pt_matched_mchmid=1.1, eta_matched_mchmid=-3.05, phi_matched_mchmid=0.52,
    n_clusters=10, n_clusters_mft=0, p_dca=0.2, r_at_absorber_end=50.0,
    chi2=1.0, chi2_match_mchmid=2.0, chi2_match_mchmft=0.0,
    mch_bitmap=0, mid_bitmap=0, mid_boards=0, mft_cluster_sizes_and_track_flags=0, chi2_mft=0.0,
    is_associated_to_mpc=True, is_ambiguous=False,
)


def _records(*specs: tuple[int, int, ForwardTrackType, int]) -> list[MuonRecord]:
    """Records from `(collision_id, fwdtrack_id, track_type, mfttrack_id)` tuples."""
    return [
        replace(_BASE, muon_id=i, collision_id=c, fwdtrack_id=f, track_type=t, mfttrack_id=m)
        for i, (c, f, t, m) in enumerate(specs)
    ]


class TestAmbiguousMuons(unittest.TestCase):
    """Same forward track at several collisions."""

    def test_symmetric_and_self_excluding(self) -> None:
        """Records of one track list each other and never themselves."""
        muons = _records((0, 5, SA, -1), (1, 5, SA, -1), (2, 5, SA, -1), (2, 6, SA, -1))
        siblings = associate_ambiguous_muons(muons)
        self.assertEqual(siblings, [(1, 2), (0, 2), (0, 1), ()])
        for muon_id, others in enumerate(siblings):
            self.assertNotIn(muon_id, others)
            for other in others:
                self.assertIn(muon_id, siblings[other])

    def test_empty_input(self) -> None:
        """Empty record streams give empty sibling lists."""
        self.assertEqual(associate_ambiguous_muons([]), [])
        self.assertEqual(associate_same_mft([]), [])


class TestSameMFTMuons(unittest.TestCase):
    """Global muons sharing an MFT track."""

    def test_only_same_collision_globals(self) -> None:
        """Only global muons at the same collision share an MFT sibling."""
        muons = _records(
            (0, 1, GL, 7),
            (0, 2, GL, 7),
            (1, 3, GL, 7),
            (0, 4, GL, 8),
            (0, 5, SA, 7),
        )
        self.assertEqual(associate_same_mft(muons), [(1,), (0,), (), (), ()])


class TestHistograms(unittest.TestCase):
    """Registry booking, filling and cloning."""

    def test_fill_and_bounds(self) -> None:
        """Out-of-range and non-finite values are dropped."""
        reg = HistogramRegistry()
        hist = reg.add("h", "test", ((10, 0.0, 10.0),))
        for value in (0.0, 2.5, 9.999, 10.0, -1.0, math.nan, math.inf):
            reg.fill("h", value)
        self.assertEqual(hist.entries, 3.0)
        self.assertEqual(hist.counts[0], 1.0)
        self.assertEqual(hist.counts[2], 1.0)
        self.assertEqual(hist.counts[9], 1.0)

    def test_2d_and_errors(self) -> None:
        """2D fills index both axes; misuse raises."""
        reg = HistogramRegistry()
        reg.add("a/h2", "2d", ((4, 0.0, 4.0), (2, -1.0, 1.0)))
        reg.fill("a/h2", 1.5, 0.5)
        self.assertEqual(reg.get("a/h2").counts[1, 1], 1.0)
        with self.assertRaises(ValueError):
            reg.fill("a/h2", 1.0)
        with self.assertRaises(ValueError):
            reg.add("a/h2", "again", ((1, 0.0, 1.0),))
        with self.assertRaises(KeyError):
            reg.get("missing")

    def test_clone_copies_binning_only(self) -> None:
        """Clones share binning but start empty."""
        reg = HistogramRegistry()
        reg.add("a/h", "h", ((5, 0.0, 5.0),))
        reg.fill("a/h", 1.0)
        reg.add_clone("a/", "b/")
        self.assertIn("b/h", reg)
        self.assertEqual(reg.get("b/h").entries, 0.0)
        self.assertEqual(len(reg), 2)

    def test_muon_qa_fills_category_folder(self) -> None:
        """Each muon fills the folder of its category."""
        qa = MuonQA()
        self.assertIn("MCHMID/hDCAxyResolutionvsPt", qa.registry)
        qa.fill(replace(_BASE, track_type=GL), dca_in_sigma=2.0, chi2_per_ndf=1.5)
        qa.fill(_BASE, dca_in_sigma=2.0, chi2_per_ndf=1.5)
        reg = qa.registry
        self.assertEqual(reg.get("hMuonType").entries, 2.0)
        self.assertEqual(reg.get("MFTMCHMID/hChi2").entries, 1.0)
        self.assertEqual(reg.get("MCHMID/hChi2").entries, 1.0)
        self.assertEqual(reg.get("MCHMID/hDeltaPt_Pt").entries, 1.0)


if __name__ == "__main__":
    unittest.main()
