"""Unit tests for JSON loaders, table export and the command-line entrypoint."""

from __future__ import annotations

import json
import math
import tempfile
import unittest
from pathlib import Path

import numpy as np
import pandas as pd

from fwdmuon import ForwardTrackType, ProcessMode
from fwdmuon.cli import main
from fwdmuon.io import load_event_batch_json, load_skimmer_config_json


def _track_item(fwdtrack_id: int, collision_id: int, phi: float = 0.5) -> dict:
    """Standalone muon with pt 0.5 and eta -3 coming from the origin, at the absorber end."""
    tanl = math.sinh(-3.0)
    r = -505.0 / tanl
    return {
        "fwdtrack_id": fwdtrack_id,
        "track_type": 3,
        "collision_id": collision_id,
        "state": {"z": -505.0, "x": r * math.cos(phi), "y": r * math.sin(phi), "phi": phi, "tanl": tanl, "invqpt": -2.0},
        # lower triangle of a diagonal covariance
        "cov5": [0.01, 0.0, 0.01, 0.0, 0.0, 1e-6, 0.0, 0.0, 0.0, 1e-4, 0.0, 0.0, 0.0, 0.0, 1e-4],
        "n_clusters": 12,
        "chi2": 1.2,
        "chi2_match_mchmid": 3.0,
        "r_at_absorber_end": r,
    }


def _batch_payload() -> dict:
    return {
        "collisions": [
            {"collision_id": 0, "x": 0.0, "y": 0.0, "z": 0.0, "run_number": 1, "timestamp": 1700000100000},
            {"collision_id": 1, "x": 0.0, "y": 0.0, "z": 0.2, "run_number": 1, "swt_alias_raw": 2},
        ],
        "fwdtracks": [_track_item(0, 0), _track_item(1, 1, phi=2.5)],
        "mft_tracks": [{"mft_track_id": 4, "n_clusters": 6, "chi2": 3.0, "eta": -3.0, "phi": 0.5}],
        "associations": [
            {"collision_id": 0, "fwdtrack_id": 0},
            {"collision_id": 1, "fwdtrack_id": 0},
            {"collision_id": 1, "fwdtrack_id": 1},
        ],
    }


def _calibration_payload() -> dict:
    return {
        "runs": {"1": {"sor": 100, "eor": 200}},
        "objects": {
            "GLO/Config/GRPMagField": [{"valid_from": 0, "payload": {"l3_current": 0.0, "dipole_current": 0.0}}],
            "GLO/Config/GeometryAligned": [{"valid_from": 0, "payload": {"z_absorber_end": -505.0}}],
        },
    }


class TestIOLoaders(unittest.TestCase):
    """Validate parsing of batch and configuration JSON inputs."""

    def test_load_event_batch_json(self) -> None:
        """Batch loader parses all four tables and unpacks the covariance triangle."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "batch.json"
            path.write_text(json.dumps(_batch_payload()), encoding="utf-8")
            batch = load_event_batch_json(path)

        self.assertEqual(len(batch.collisions), 2)
        self.assertEqual(len(batch.fwdtracks), 2)
        self.assertEqual(len(batch.mft_tracks), 1)
        self.assertEqual(len(batch.associations), 3)
        track = batch.fwdtracks[0]
        self.assertEqual(track.track_type, ForwardTrackType.MUON_STANDALONE_TRACK)
        self.assertEqual(track.state.z, -505.0)
        self.assertEqual(track.state.cov5[2][2], 1e-6)
        self.assertEqual(track.state.cov5[4][4], 1e-4)
        self.assertEqual(track.state.cov5[0][1], 0.0)
        self.assertIsNone(track.mc_particle_id)
        self.assertEqual(batch.collisions[1].swt_alias_raw, 2)
        self.assertEqual(batch.collisions[0].timestamp, 1700000100000)
        self.assertEqual(batch.collisions[1].timestamp, 0)

    def test_full_matrix_covariance_and_flat_state(self) -> None:
        """State keys may also sit on the track object next to a 5x5 covariance."""
        item = _track_item(0, 0)
        item.update(item.pop("state"))
        item["cov5"] = [[float(i == j) for j in range(5)] for i in range(5)]
        payload = {"collisions": [], "fwdtracks": [item]}
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "batch.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            batch = load_event_batch_json(path)
        self.assertEqual(batch.fwdtracks[0].state.cov5[3][3], 1.0)

    def test_invalid_inputs_raise(self) -> None:
        """Malformed batch documents raise ValueError."""
        bad_type = _batch_payload()
        bad_type["fwdtracks"][0]["track_type"] = 9
        bad_cov = _batch_payload()
        bad_cov["fwdtracks"][0]["cov5"] = [1.0, 2.0]
        with tempfile.TemporaryDirectory() as tmpdir:
            for name, payload in (("type", bad_type), ("cov", bad_cov), ("missing", {"collisions": []})):
                path = Path(tmpdir) / f"{name}.json"
                path.write_text(json.dumps(payload), encoding="utf-8")
                with self.assertRaises(ValueError):
                    load_event_batch_json(path)

    def test_load_skimmer_config_json(self) -> None:
        """Config loader keeps defaults for missing keys and rejects unknown cuts."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"mode": "TTCA", "cuts": {"min_pt": 0.7}}), encoding="utf-8")
            config = load_skimmer_config_json(path)

            bad = Path(tmpdir) / "bad.json"
            bad.write_text(json.dumps({"cuts": {"min_ptt": 0.7}}), encoding="utf-8")
            with self.assertRaises(ValueError):
                load_skimmer_config_json(bad)

        self.assertEqual(config.mode, ProcessMode.TTCA)
        self.assertEqual(config.cuts.min_pt, 0.7)
        self.assertEqual(config.cuts.max_rabs, 89.5)
        self.assertTrue(config.refit_global_muon)

    def test_config_flags_must_be_booleans(self) -> None:
        """Switches accept JSON true/false only; a "false" string is rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"refit_global_muon": False, "mc_truth": True}), encoding="utf-8")
            config = load_skimmer_config_json(path)
            for key, value in (("refit_global_muon", "false"), ("fill_qa_histograms", 1), ("trigger_filtered", None)):
                bad = Path(tmpdir) / f"bad_{key}.json"
                bad.write_text(json.dumps({key: value}), encoding="utf-8")
                with self.assertRaises(ValueError):
                    load_skimmer_config_json(bad)

        self.assertFalse(config.refit_global_muon)
        self.assertTrue(config.mc_truth)


class TestCommandLine(unittest.TestCase):
    """Run the CLI end to end on small JSON inputs."""

    def test_cli_writes_csv_table_and_qa(self) -> None:
        """CLI run in TTCA mode writes one row per record plus QA counts."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "batch.json").write_text(json.dumps(_batch_payload()), encoding="utf-8")
            (root / "calib.json").write_text(json.dumps(_calibration_payload()), encoding="utf-8")
            out = root / "muons.csv"
            qa_out = root / "qa.npz"

            code = main([
                "--events", str(root / "batch.json"),
                "--calibration", str(root / "calib.json"),
                "--mode", "ttca",
                "--qa-out", str(qa_out),
                "--out", str(out),
            ])
            table = pd.read_csv(out, keep_default_na=False)
            with np.load(qa_out) as archive:
                muon_type = archive["hMuonType/counts"]

        self.assertEqual(code, 0)
        self.assertEqual(list(table["fwdtrack_id"]), [0, 0, 1])
        self.assertEqual(list(table["collision_id"]), [0, 1, 1])
        self.assertEqual(list(table["track_type"]), [3, 3, 3])
        self.assertEqual([str(v) for v in table["ambiguous_muon_ids"]], ["1", "0", ""])
        self.assertIn("c_1pt1pt", table.columns)
        self.assertEqual(float(muon_type.sum()), 3.0)

    def test_cli_cut_override_and_trigger_filter(self) -> None:
        """Trigger flag and cut overrides change the written table."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "batch.json").write_text(json.dumps(_batch_payload()), encoding="utf-8")
            (root / "calib.json").write_text(json.dumps(_calibration_payload()), encoding="utf-8")
            out = root / "muons.pkl"

            main([
                "--events", str(root / "batch.json"),
                "--calibration", str(root / "calib.json"),
                "--trigger-filtered",
                "--out", str(out),
            ])
            triggered = pd.read_pickle(out)

            main([
                "--events", str(root / "batch.json"),
                "--calibration", str(root / "calib.json"),
                "--min-pt", "1.0",
                "--out", str(out),
            ])
            tight = pd.read_pickle(out)

        self.assertEqual(list(triggered["collision_id"]), [1])
        self.assertEqual(len(tight), 0)

    def test_cli_rejects_unknown_suffix(self) -> None:
        """Unsupported output suffixes are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            (root / "batch.json").write_text(json.dumps(_batch_payload()), encoding="utf-8")
            (root / "calib.json").write_text(json.dumps(_calibration_payload()), encoding="utf-8")
            with self.assertRaises(ValueError):
                main([
                    "--events", str(root / "batch.json"),
                    "--calibration", str(root / "calib.json"),
                    "--out", str(root / "muons.txt"),
                ])


if __name__ == "__main__":
    unittest.main()
