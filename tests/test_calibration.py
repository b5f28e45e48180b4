"""Unit tests for run-scoped calibration and the field map."""

from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from fwdmuon import CalibrationContext, CalibrationError, FieldMap, JsonCalibrationStore

GRP = "GLO/Config/GRPMagField"
GEO = "GLO/Config/GeometryAligned"


class _CountingStore(JsonCalibrationStore):
    """Store that records every retrieval."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls: list[tuple[str, int]] = []

    def retrieve(self, path, timestamp):
        self.calls.append((path, timestamp))
        return super().retrieve(path, timestamp)


class TestCalibrationContext(unittest.TestCase):
    """Binding, memoisation and missing-object handling."""

    @staticmethod
    def _objects(with_field: bool = True, with_geometry: bool = True) -> dict:
        """Two field validity windows and one geometry object."""
        objects: dict = {}
        if with_field:
            objects[GRP] = [
                {"valid_from": 0, "valid_until": 999, "payload": {"l3_current": 30000.0, "dipole_current": 6000.0}},
                {"valid_from": 1000, "valid_until": 1999, "payload": {"l3_current": -30000.0, "dipole_current": -6000.0}},
            ]
        if with_geometry:
            objects[GEO] = [{"valid_from": 0, "payload": {"z_absorber_end": -503.0, "name": "aligned"}}]
        return objects

    def test_bind_loads_field_for_start_of_run(self) -> None:
        """The field valid at the run's start timestamp is selected."""
        store = JsonCalibrationStore(runs={1: (10, 20), 2: (1500, 1600)}, objects=self._objects())
        ctx = CalibrationContext(store)
        self.assertFalse(ctx.is_bound)

        ctx.bind(1)
        self.assertTrue(ctx.is_bound)
        self.assertAlmostEqual(ctx.field.solenoid_bz, 5.0, places=12)
        self.assertAlmostEqual(ctx.field.dipole_by, -6.7, places=12)
        self.assertEqual(ctx.geometry.z_absorber_end, -503.0)

        ctx.bind(2)
        self.assertAlmostEqual(ctx.field.solenoid_bz, -5.0, places=12)
        self.assertEqual(ctx.run_number, 2)

    def test_bind_is_memoised_per_run(self) -> None:
        """Consecutive binds of the same run do not query the source again."""
        store = _CountingStore(runs={1: (10, 20), 2: (1500, 1600)}, objects=self._objects())
        ctx = CalibrationContext(store)
        ctx.bind(1)
        n_first = len(store.calls)
        ctx.bind(1)
        ctx.bind(1)
        self.assertEqual(len(store.calls), n_first)

        ctx.bind(2)
        # Geometry is loaded once; only the field is fetched again.
        self.assertEqual(store.calls[n_first:], [(GRP, 1500)])

    def test_missing_field_is_fatal(self) -> None:
        """No field object and no fallback aborts the bind."""
        store = JsonCalibrationStore(runs={1: (10, 20)}, objects=self._objects(with_field=False))
        ctx = CalibrationContext(store)
        with self.assertRaises(CalibrationError):
            ctx.bind(1)
        self.assertFalse(ctx.is_bound)

    def test_fallback_field_is_used_when_missing(self) -> None:
        """A missing field object falls back with a warning."""
        store = JsonCalibrationStore(runs={1: (10, 20)}, objects=self._objects(with_field=False))
        fallback = FieldMap(solenoid_bz=2.0)
        ctx = CalibrationContext(store, fallback_field=fallback)
        with self.assertLogs("fwdmuon", level="WARNING"):
            ctx.bind(1)
        self.assertIs(ctx.field, fallback)

    def test_geometry_requirement(self) -> None:
        """Missing geometry raises unless it is optional, then defaults apply."""
        objects = self._objects(with_geometry=False)
        with self.assertRaises(CalibrationError):
            CalibrationContext(JsonCalibrationStore(runs={1: (10, 20)}, objects=objects)).bind(1)

        ctx = CalibrationContext(JsonCalibrationStore(runs={1: (10, 20)}, objects=objects), require_geometry=False)
        ctx.bind(1)
        self.assertEqual(ctx.geometry.z_absorber_end, -505.0)

    def test_unknown_run_and_unbound_access(self) -> None:
        """Unbound access and unknown runs raise CalibrationError."""
        ctx = CalibrationContext(JsonCalibrationStore(runs={}, objects=self._objects()))
        with self.assertRaises(CalibrationError):
            _ = ctx.field
        with self.assertRaises(CalibrationError):
            _ = ctx.geometry
        with self.assertRaises(CalibrationError):
            ctx.bind(7)

    def test_field_payload_missing_current(self) -> None:
        """A field payload without both currents is rejected."""
        objects = self._objects()
        objects[GRP] = [{"payload": {"l3_current": 30000.0}}]
        ctx = CalibrationContext(JsonCalibrationStore(runs={1: (10, 20)}, objects=objects))
        with self.assertRaises(CalibrationError):
            ctx.bind(1)

    def test_overlapping_windows_pick_latest(self) -> None:
        """When validity windows overlap, the entry with the latest start wins."""
        objects = self._objects()
        objects[GRP] = [
            {"valid_from": 0, "valid_until": 5000, "payload": {"l3_current": 30000.0, "dipole_current": 0.0}},
            {"valid_from": 100, "valid_until": 5000, "payload": {"l3_current": 15000.0, "dipole_current": 0.0}},
            {"valid_from": 50, "valid_until": 5000, "payload": {"l3_current": 6000.0, "dipole_current": 0.0}},
        ]
        store = JsonCalibrationStore(runs={1: (200, 300)}, objects=objects)
        self.assertEqual(store.retrieve(GRP, 200)["l3_current"], 15000.0)
        self.assertEqual(store.retrieve(GRP, 60)["l3_current"], 6000.0)
        self.assertEqual(store.retrieve(GRP, 10)["l3_current"], 30000.0)

        ctx = CalibrationContext(store)
        ctx.bind(1)
        self.assertAlmostEqual(ctx.field.solenoid_bz, 2.5, places=12)

    def test_store_from_json(self) -> None:
        """Run windows and objects are read from one JSON document."""
        doc = {"runs": {"5": {"sor": 100, "eor": 200}}, "objects": self._objects()}
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "calib.json"
            path.write_text(json.dumps(doc), encoding="utf-8")
            store = JsonCalibrationStore.from_json(path)

        self.assertEqual(store.run_duration(5), (100, 200))
        self.assertIsNone(store.retrieve(GRP, 5000))
        self.assertEqual(store.retrieve(GEO, 5000)["name"], "aligned")


class TestFieldMap(unittest.TestCase):
    """Analytic field model."""

    def test_scaling_and_profile(self) -> None:
        """Fields scale with the magnet currents and follow their z profiles."""
        field_map = FieldMap.from_grp(l3_current=15000.0, dipole_current=0.0)
        self.assertAlmostEqual(field_map.solenoid_bz, 2.5, places=12)
        self.assertFalse(field_map.is_null)
        self.assertTrue(FieldMap.from_grp(0.0, 0.0).is_null)

        x = np.array([0.0, 10.0])
        y = np.array([0.0, -5.0])
        bx, by, bz = field_map.field_at(x, y, -100.0)
        np.testing.assert_allclose(bz, [2.5, 2.5])
        np.testing.assert_allclose(bx, [0.0, 0.0])
        _, _, bz_outside = field_map.field_at(x, y, -700.0)
        np.testing.assert_allclose(bz_outside, [0.0, 0.0])

        dipole = FieldMap.from_grp(0.0, 6000.0)
        _, by_center, _ = dipole.field_at(x, y, dipole.dipole_z_center)
        np.testing.assert_allclose(by_center, [-6.7, -6.7])


if __name__ == "__main__":
    unittest.main()
