"""Input/output helpers for JSON inputs and tabular result export."""

from __future__ import annotations

import json
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import numpy as np

from .models import (
    Collision,
    EventBatch,
    ForwardTrackType,
    FwdTrack,
    FwdTrackState,
    MFTTrack,
    MuonCuts,
    ProcessMode,
    SkimmerConfig,
    SkimResult,
    TrackAssociation,
)
from .qa import HistogramRegistry


def load_event_batch_json(path: str | Path) -> EventBatch:
    """Load one processing batch into an `EventBatch`.

    Expected shape:
    {
      "collisions": [...],
      "fwdtracks": [...],
      "mft_tracks": [...],      (optional)
      "associations": [...]     (optional, TTCA mode)
    }
    """
    data = _load_json(path)
    collisions_data = data.get("collisions")
    if not isinstance(collisions_data, list):
        raise ValueError("Batch JSON must contain a list under key 'collisions'.")
    tracks_data = data.get("fwdtracks")
    if not isinstance(tracks_data, list):
        raise ValueError("Batch JSON must contain a list under key 'fwdtracks'.")
    mft_data = data.get("mft_tracks", [])
    assoc_data = data.get("associations", [])
    if not isinstance(mft_data, list) or not isinstance(assoc_data, list):
        raise ValueError("Batch keys 'mft_tracks' and 'associations' must be lists.")
    context = f"{path}"
    return EventBatch(
        collisions=tuple(
            _parse_collision_item(item, idx, context) for idx, item in enumerate(collisions_data)
        ),
        fwdtracks=tuple(
            _parse_fwdtrack_item(item, idx, context) for idx, item in enumerate(tracks_data)
        ),
        mft_tracks=tuple(
            _parse_mft_track_item(item, idx, context) for idx, item in enumerate(mft_data)
        ),
        associations=tuple(
            _parse_association_item(item, idx, context) for idx, item in enumerate(assoc_data)
        ),
    )


def load_skimmer_config_json(path: str | Path) -> SkimmerConfig:
    """Load skimmer configuration; missing keys keep their defaults."""
    data = _load_json(path)
    cuts_data = data.get("cuts", {})
    if not isinstance(cuts_data, dict):
        raise ValueError("Config key 'cuts' must be an object.")
    known_cuts = {f.name for f in fields(MuonCuts)}
    unknown = sorted(set(cuts_data) - known_cuts)
    if unknown:
        raise ValueError(f"Unknown cut name(s) in {path}: {', '.join(unknown)}")
    cuts = MuonCuts(**{k: float(v) for k, v in cuts_data.items()})
    defaults = SkimmerConfig()
    return SkimmerConfig(
        cuts=cuts,
        refit_global_muon=_parse_flag(data, "refit_global_muon", defaults.refit_global_muon, path),
        fill_qa_histograms=_parse_flag(data, "fill_qa_histograms", defaults.fill_qa_histograms, path),
        ccdb_url=str(data.get("ccdb_url", defaults.ccdb_url)),
        grpmag_path=str(data.get("grpmag_path", defaults.grpmag_path)),
        geo_path=str(data.get("geo_path", defaults.geo_path)),
        mode=ProcessMode(str(data.get("mode", defaults.mode.value)).lower()),
        trigger_filtered=_parse_flag(data, "trigger_filtered", defaults.trigger_filtered, path),
        mc_truth=_parse_flag(data, "mc_truth", defaults.mc_truth, path),
    )


def write_muon_table(path: str | Path, result: SkimResult) -> None:
    """Write muon records, covariances and sibling indices into one Parquet/CSV/Pickle table."""
    pd = _require_pandas()
    df = pd.DataFrame(_muon_rows(result))
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    else:
        raise ValueError(
            f"Unsupported output format '{suffix}'. Use .parquet, .csv, or .pkl"
        )


def write_qa_histograms(path: str | Path, registry: HistogramRegistry) -> None:
    """Store histogram counts and bin edges in a numpy `.npz` archive."""
    arrays: dict[str, np.ndarray] = {}
    for name in registry.names():
        hist = registry.get(name)
        arrays[f"{name}/counts"] = hist.counts
        for axis, edges in enumerate(hist.edges):
            arrays[f"{name}/edges{axis}"] = edges
    np.savez(Path(path), **arrays)


def _muon_rows(result: SkimResult) -> list[dict[str, Any]]:
    """Flatten the aligned output streams into DataFrame-ready row dictionaries."""
    if not (
        len(result.muons)
        == len(result.covariances)
        == len(result.ambiguous_muon_ids)
        == len(result.same_mft_muon_ids)
    ):
        raise ValueError("Muon, covariance and sibling streams must have equal length.")
    rows: list[dict[str, Any]] = []
    for muon, cov, amb_ids, mft_ids in zip(
        result.muons,
        result.covariances,
        result.ambiguous_muon_ids,
        result.same_mft_muon_ids,
        strict=True,
    ):
        row: dict[str, Any] = asdict(muon)
        row["track_type"] = int(muon.track_type)
        row.update(asdict(cov))
        row["ambiguous_muon_ids"] = ",".join(str(x) for x in amb_ids)
        row["same_mft_muon_ids"] = ",".join(str(x) for x in mft_ids)
        rows.append(row)
    return rows


def _require_pandas():
    """Import pandas lazily and provide a clear installation hint on failure."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required to write output tables. Install pandas and pyarrow."
        ) from exc
    return pd


def _parse_flag(data: dict[str, Any], key: str, default: bool, path: str | Path) -> bool:
    """Read an optional JSON boolean; strings such as "false" are rejected."""
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"Config key '{key}' in {path} must be true or false, got {value!r}.")
    return value


def _parse_collision_item(item: Any, idx: int, context: str) -> Collision:
    """Parse one collision dictionary into a `Collision`."""
    if not isinstance(item, dict):
        raise ValueError(f"Collision entry at index {idx} in {context} must be an object.")
    mc_id = item.get("mc_collision_id")
    return Collision(
        collision_id=int(item.get("collision_id", idx)),
        x=float(item["x"]),
        y=float(item["y"]),
        z=float(item["z"]),
        run_number=int(item["run_number"]),
        timestamp=int(item.get("timestamp", 0)),
        is_selected=bool(item.get("is_selected", True)),
        swt_alias_raw=int(item.get("swt_alias_raw", 0)),
        mc_collision_id=int(mc_id) if mc_id is not None else None,
    )


def _parse_fwdtrack_item(item: Any, idx: int, context: str) -> FwdTrack:
    """Parse one forward-track dictionary into a `FwdTrack`."""
    if not isinstance(item, dict):
        raise ValueError(f"Fwdtrack entry at index {idx} in {context} must be an object.")
    try:
        track_type = ForwardTrackType(int(item["track_type"]))
    except ValueError as exc:
        raise ValueError(
            f"Fwdtrack at index {idx} in {context} has unknown track_type {item['track_type']!r}."
        ) from exc
    state = item.get("state", item)
    if not isinstance(state, dict):
        raise ValueError(f"Fwdtrack state at index {idx} in {context} must be an object.")
    mc_id = item.get("mc_particle_id")
    return FwdTrack(
        fwdtrack_id=int(item.get("fwdtrack_id", idx)),
        track_type=track_type,
        state=FwdTrackState(
            z=float(state["z"]),
            x=float(state["x"]),
            y=float(state["y"]),
            phi=float(state["phi"]),
            tanl=float(state["tanl"]),
            invqpt=float(state["invqpt"]),
            cov5=_parse_cov5(item["cov5"]),
        ),
        collision_id=int(item.get("collision_id", -1)),
        n_clusters=int(item.get("n_clusters", 0)),
        chi2=float(item.get("chi2", 0.0)),
        chi2_match_mchmid=float(item.get("chi2_match_mchmid", 0.0)),
        chi2_match_mchmft=float(item.get("chi2_match_mchmft", 0.0)),
        r_at_absorber_end=float(item.get("r_at_absorber_end", 0.0)),
        match_mch_track_id=int(item.get("match_mch_track_id", -1)),
        match_mft_track_id=int(item.get("match_mft_track_id", -1)),
        mch_bitmap=int(item.get("mch_bitmap", 0)),
        mid_bitmap=int(item.get("mid_bitmap", 0)),
        mid_boards=int(item.get("mid_boards", 0)),
        mc_particle_id=int(mc_id) if mc_id is not None else None,
    )


def _parse_mft_track_item(item: Any, idx: int, context: str) -> MFTTrack:
    """Parse one MFT-track dictionary into an `MFTTrack`."""
    if not isinstance(item, dict):
        raise ValueError(f"MFT track entry at index {idx} in {context} must be an object.")
    mc_id = item.get("mc_particle_id")
    return MFTTrack(
        mft_track_id=int(item.get("mft_track_id", idx)),
        n_clusters=int(item["n_clusters"]),
        chi2=float(item.get("chi2", 0.0)),
        eta=float(item["eta"]),
        phi=float(item["phi"]),
        cluster_sizes_and_track_flags=int(item.get("cluster_sizes_and_track_flags", 0)),
        mc_particle_id=int(mc_id) if mc_id is not None else None,
    )


def _parse_association_item(item: Any, idx: int, context: str) -> TrackAssociation:
    """Parse one track-to-collision association."""
    if not isinstance(item, dict):
        raise ValueError(f"Association entry at index {idx} in {context} must be an object.")
    return TrackAssociation(
        collision_id=int(item["collision_id"]),
        fwdtrack_id=int(item["fwdtrack_id"]),
    )


def _parse_cov5(value: Any):
    """Validate a 5x5 nested list (or its 15-entry lower triangle) into a symmetric tuple."""
    if isinstance(value, list) and len(value) == 15 and all(isinstance(v, (int, float)) for v in value):
        lower = [float(v) for v in value]
        mat = [[0.0] * 5 for _ in range(5)]
        k = 0
        for i in range(5):
            for j in range(i + 1):
                mat[i][j] = mat[j][i] = lower[k]
                k += 1
        return tuple(tuple(row) for row in mat)
    if not isinstance(value, list) or len(value) != 5:
        raise ValueError("Track cov5 must be a 5x5 list or a 15-entry lower triangle.")
    rows: list[tuple[float, float, float, float, float]] = []
    for row in value:
        if not isinstance(row, list) or len(row) != 5:
            raise ValueError("Track cov5 must be a 5x5 list or a 15-entry lower triangle.")
        rows.append((float(row[0]), float(row[1]), float(row[2]), float(row[3]), float(row[4])))
    return (rows[0], rows[1], rows[2], rows[3], rows[4])


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
