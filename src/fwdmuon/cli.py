"""Command-line interface for skimming forward muons from a batch input."""

from __future__ import annotations

import argparse
from dataclasses import fields, replace

from .calibration import CalibrationContext, JsonCalibrationStore
from .io import (
    load_event_batch_json,
    load_skimmer_config_json,
    write_muon_table,
    write_qa_histograms,
)
from .logger import configure_logging, logger
from .models import MuonCuts, ProcessMode, SkimmerConfig
from .skimmer import PrimaryMuonSkimmer

_CUT_HELP = {
    "min_pt": "Minimum pT (GeV/c).",
    "max_pt": "Maximum pT (GeV/c).",
    "min_eta_sa": "Minimum eta for MCH-MID muons.",
    "max_eta_sa": "Maximum eta for MCH-MID muons.",
    "min_eta_gl": "Minimum eta for MFT-MCH-MID muons.",
    "max_eta_gl": "Maximum eta for MFT-MCH-MID muons.",
    "min_rabs_gl": "Minimum R at absorber end for global muons (cm).",
    "min_rabs": "Minimum R at absorber end (cm).",
    "mid_rabs": "R at absorber end splitting the pDCA cuts (cm).",
    "max_rabs": "Maximum R at absorber end (cm).",
    "max_dca_xy": "Maximum DCAxy for global muons (cm).",
    "max_pdca_large_r": "Maximum pDCA above mid R (GeV/c cm).",
    "max_pdca_small_r": "Maximum pDCA below mid R (GeV/c cm).",
    "max_matching_chi2_mchmft": "Maximum MCH-MFT matching chi2.",
    "max_chi2_sa": "Maximum chi2 for standalone muons.",
    "max_chi2_gl": "Maximum chi2/ndf for global muons.",
}


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="fwd-muon-skim",
        description="Select, propagate and de-duplicate forward muons per collision.",
    )
    parser.add_argument(
        "--events",
        required=True,
        help="Input JSON with 'collisions', 'fwdtracks', 'mft_tracks' and 'associations'.",
    )
    parser.add_argument(
        "--calibration",
        default=None,
        help="Calibration JSON (runs + field/geometry objects). Defaults to the config's ccdb_url.",
    )
    parser.add_argument("--config", default=None, help="Optional skimmer configuration JSON.")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ProcessMode],
        default=None,
        help="sa: tracks of their own collision; ttca: use the association table.",
    )
    parser.add_argument(
        "--trigger-filtered",
        action="store_true",
        default=None,
        help="Only process collisions with a non-zero software-trigger alias.",
    )
    parser.add_argument(
        "--mc-truth",
        action="store_true",
        default=None,
        help="Require MC collision and particle labels.",
    )
    parser.add_argument(
        "--no-refit-global-muon",
        action="store_true",
        help="Keep vertex kinematics of global muons instead of using MFT eta/phi.",
    )
    for name, help_text in _CUT_HELP.items():
        parser.add_argument(f"--{name.replace('_', '-')}", type=float, default=None, help=help_text)
    parser.add_argument(
        "--qa-out",
        default=None,
        help="Fill QA histograms and write them to this .npz file.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log per-candidate decisions.")
    parser.add_argument(
        "--out",
        required=True,
        help="Output table file for muons (.parquet, .csv, .pkl).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load inputs, run the skimmer, write the muon table."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    config = load_skimmer_config_json(args.config) if args.config else SkimmerConfig()
    config = _apply_overrides(config, args)

    store = JsonCalibrationStore.from_json(args.calibration or config.ccdb_url)
    context = CalibrationContext(store, grpmag_path=config.grpmag_path, geo_path=config.geo_path)
    skimmer = PrimaryMuonSkimmer(
        context,
        cuts=config.cuts,
        refit_global_muon=config.refit_global_muon,
        fill_qa_histograms=config.fill_qa_histograms,
    )
    batch = load_event_batch_json(args.events)
    result = skimmer.process(
        batch,
        mode=config.mode,
        trigger_filtered=config.trigger_filtered,
        mc_truth=config.mc_truth,
    )
    write_muon_table(args.out, result)
    logger.info("Wrote %d muons to %s", len(result.muons), args.out)
    if args.qa_out and result.qa is not None:
        write_qa_histograms(args.qa_out, result.qa)
        logger.info("Wrote %d QA histograms to %s", len(result.qa), args.qa_out)
    return 0


def _apply_overrides(config: SkimmerConfig, args: argparse.Namespace) -> SkimmerConfig:
    """Command-line values take precedence over the configuration file."""
    cut_overrides = {
        f.name: getattr(args, f.name)
        for f in fields(MuonCuts)
        if getattr(args, f.name) is not None
    }
    changes: dict[str, object] = {"cuts": replace(config.cuts, **cut_overrides)}
    if args.mode is not None:
        changes["mode"] = ProcessMode(args.mode)
    if args.trigger_filtered:
        changes["trigger_filtered"] = True
    if args.mc_truth:
        changes["mc_truth"] = True
    if args.no_refit_global_muon:
        changes["refit_global_muon"] = False
    if args.qa_out:
        changes["fill_qa_histograms"] = True
    return replace(config, **changes)


if __name__ == "__main__":
    raise SystemExit(main())
