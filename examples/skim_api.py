"""Library API example: skim one batch in TTCA mode and write a parquet table.

Run from repository root without installation:
    PYTHONPATH=src python examples/skim_api.py
"""

from __future__ import annotations

from pathlib import Path

from fwdmuon import CalibrationContext, JsonCalibrationStore, MuonCuts, PrimaryMuonSkimmer, ProcessMode
from fwdmuon.io import load_event_batch_json, write_muon_table
from fwdmuon.logger import configure_logging


def main() -> int:
    """Load the example batch, skim it with tighter pT, and write the muons."""
    configure_logging()
    store = JsonCalibrationStore.from_json("examples/calibration.json")
    skimmer = PrimaryMuonSkimmer(
        CalibrationContext(store),
        cuts=MuonCuts(min_pt=0.5),
        fill_qa_histograms=True,
    )
    batch = load_event_batch_json("examples/batch.json")
    result = skimmer.process(batch, mode=ProcessMode.TTCA)

    for muon, siblings in zip(result.muons, result.ambiguous_muon_ids):
        print(
            f"muon {muon.muon_id}: collision {muon.collision_id} fwdtrack {muon.fwdtrack_id} "
            f"pT={muon.pt:.3f} eta={muon.eta:.3f} ambiguous_with={list(siblings)}"
        )
    out_path = Path("examples/muons.parquet")
    write_muon_table(out_path, result)
    print(f"Wrote {len(result.muons)} muons to {out_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
