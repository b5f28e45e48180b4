"""Run-scoped calibration access: field map and aligned geometry.

`CalibrationContext` is owned by the batch driver and rebound only when the
run number changes. Missing calibration is fatal (`CalibrationError`).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from .field import FieldMap
from .logger import logger

Z_ABSORBER_END = -505.0  # cm


class CalibrationError(RuntimeError):
    """Raised when a required calibration object cannot be obtained."""


@dataclass(frozen=True)
class Geometry:
    """Aligned muon-arm geometry relevant to track propagation."""

    z_absorber_end: float = Z_ABSORBER_END
    name: str = "default"


class CalibrationSource(Protocol):
    """Minimal calibration-database client interface."""

    def run_duration(self, run_number: int) -> tuple[int, int]:
        """Return `(start_of_run, end_of_run)` timestamps in ms."""
        ...

    def retrieve(self, path: str, timestamp: int) -> dict[str, Any] | None:
        """Return the payload valid at `timestamp`, or None if absent."""
        ...


class JsonCalibrationStore:
    """Calibration source backed by one JSON document.

    Expected shape:
    {
      "runs": {"<run>": {"sor": ..., "eor": ...}},
      "objects": {
        "<path>": [{"valid_from": ..., "valid_until": ..., "payload": {...}}]
      }
    }
    """

    def __init__(self, runs: dict[int, tuple[int, int]], objects: dict[str, list[dict[str, Any]]]):
        self._runs = runs
        self._objects = objects

    @classmethod
    def from_json(cls, path: str | Path) -> "JsonCalibrationStore":
        """Load a calibration document from disk."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Calibration document at {path} must be an object.")
        runs_data = data.get("runs", {})
        objects_data = data.get("objects", {})
        if not isinstance(runs_data, dict) or not isinstance(objects_data, dict):
            raise ValueError("Calibration document keys 'runs' and 'objects' must be objects.")
        runs: dict[int, tuple[int, int]] = {}
        for run, window in runs_data.items():
            if not isinstance(window, dict) or "sor" not in window:
                raise ValueError(f"Run entry '{run}' must define 'sor' (and optionally 'eor').")
            runs[int(run)] = (int(window["sor"]), int(window.get("eor", window["sor"])))
        objects: dict[str, list[dict[str, Any]]] = {}
        for obj_path, entries in objects_data.items():
            if not isinstance(entries, list):
                raise ValueError(f"Calibration object '{obj_path}' must be a list of validity entries.")
            objects[str(obj_path)] = entries
        return cls(runs=runs, objects=objects)

    def run_duration(self, run_number: int) -> tuple[int, int]:
        try:
            return self._runs[run_number]
        except KeyError as exc:
            raise CalibrationError(f"No start/end-of-run timestamps for run {run_number}.") from exc

    def retrieve(self, path: str, timestamp: int) -> dict[str, Any] | None:
        """Return the payload of the most recent entry valid at `timestamp`.

        Overlapping windows resolve to the entry with the latest `valid_from`.
        """
        best: dict[str, Any] | None = None
        best_from = -1
        for entry in self._objects.get(path, []):
            valid_from = int(entry.get("valid_from", 0))
            valid_until = int(entry.get("valid_until", 2**63 - 1))
            if valid_from <= timestamp <= valid_until and valid_from > best_from:
                best, best_from = entry, valid_from
        if best is None:
            return None
        payload = best.get("payload")
        return payload if isinstance(payload, dict) else None


class CalibrationContext:
    """Field map and geometry bound to the run currently being processed."""

    def __init__(
        self,
        source: CalibrationSource,
        grpmag_path: str = "GLO/Config/GRPMagField",
        geo_path: str = "GLO/Config/GeometryAligned",
        fallback_field: FieldMap | None = None,
        require_geometry: bool = True,
    ):
        self.source = source
        self.grpmag_path = grpmag_path
        self.geo_path = geo_path
        self.fallback_field = fallback_field
        self.require_geometry = require_geometry
        self.run_number: int | None = None
        self._field: FieldMap | None = None
        self._geometry: Geometry | None = None

    @property
    def field(self) -> FieldMap:
        if self._field is None:
            raise CalibrationError("No field map bound; call bind(run_number) first.")
        return self._field

    @property
    def geometry(self) -> Geometry:
        if self._geometry is None:
            raise CalibrationError("No geometry loaded; call bind(run_number) first.")
        return self._geometry

    @property
    def is_bound(self) -> bool:
        return self._field is not None

    def bind(self, run_number: int) -> None:
        """Load the calibration of `run_number` unless it is already bound."""
        if self.run_number == run_number:
            return
        sor, _ = self.source.run_duration(run_number)
        payload = self.source.retrieve(self.grpmag_path, sor)
        if payload is not None:
            field_map = _field_from_payload(payload)
        elif self.fallback_field is not None:
            logger.warning(
                "No %s for run %d; using fallback field map.", self.grpmag_path, run_number
            )
            field_map = self.fallback_field
        else:
            raise CalibrationError(
                f"No field calibration at '{self.grpmag_path}' for run {run_number} (ts={sor})."
            )
        if self._geometry is None:
            self._geometry = self._load_geometry(sor)
        self._field = field_map
        self.run_number = run_number
        logger.info(
            "Bound calibration for run %d: Bz=%.3f kG, By(dipole)=%.3f kG",
            run_number,
            field_map.solenoid_bz,
            field_map.dipole_by,
        )

    def _load_geometry(self, timestamp: int) -> Geometry:
        payload = self.source.retrieve(self.geo_path, timestamp)
        if payload is None:
            if self.require_geometry:
                raise CalibrationError(f"No geometry at '{self.geo_path}' (ts={timestamp}).")
            return Geometry()
        return Geometry(
            z_absorber_end=float(payload.get("z_absorber_end", Z_ABSORBER_END)),
            name=str(payload.get("name", self.geo_path)),
        )


def _field_from_payload(payload: dict[str, Any]) -> FieldMap:
    """Convert a field calibration payload into a `FieldMap`."""
    try:
        return FieldMap.from_grp(
            l3_current=float(payload["l3_current"]),
            dipole_current=float(payload["dipole_current"]),
        )
    except KeyError as exc:
        raise CalibrationError(f"Field payload is missing {exc.args[0]!r}.") from exc
