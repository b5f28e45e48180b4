"""Utility script to inspect/plot muon tables written by the skimmer."""

from __future__ import annotations

import argparse
from pathlib import Path


def _require_pandas():
    """Import pandas with an actionable error if not installed."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required. Install with: pip install pandas pyarrow"
        ) from exc
    return pd


def load_table(path: str):
    """Load a muon table from parquet/csv/pickle into a pandas DataFrame."""
    pd = _require_pandas()
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(p)
    if suffix == ".csv":
        return pd.read_csv(p, keep_default_na=False)
    if suffix in (".pkl", ".pickle"):
        return pd.read_pickle(p)
    raise ValueError("Supported input formats: .parquet, .csv, .pkl")


def summarize(df) -> str:
    """Per-category counts and the fraction of ambiguous records."""
    if df.empty:
        return "No muons."
    lines = []
    labels = {0: "MFT-MCH-MID", 3: "MCH-MID"}
    for track_type, group in df.groupby("track_type"):
        n_amb = int(group["is_ambiguous"].astype(bool).sum())
        lines.append(
            f"{labels.get(int(track_type), track_type):>12}: {len(group):6d} muons, "
            f"{n_amb} ambiguous, <pT>={group['pt'].mean():.3f} GeV/c"
        )
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint for interactive inspection and optional quick plotting."""
    parser = argparse.ArgumentParser(description="Inspect a forward-muon table.")
    parser.add_argument("--input", required=True, help="Path to .parquet/.csv/.pkl output.")
    parser.add_argument("--head", type=int, default=10, help="Rows to print.")
    parser.add_argument(
        "--plot",
        action="store_true",
        help="Create a quick pDCA vs R(absorber end) scatter plot (png).",
    )
    args = parser.parse_args(argv)

    df = load_table(args.input)
    columns = ["muon_id", "collision_id", "fwdtrack_id", "track_type", "pt", "eta", "phi", "p_dca", "r_at_absorber_end"]
    print(df.head(args.head)[[c for c in columns if c in df.columns]].to_string(index=False))
    print(f"\nRows={len(df)}  Columns={len(df.columns)}")
    print(summarize(df))

    if args.plot:
        try:
            import matplotlib.pyplot as plt  # type: ignore
        except ModuleNotFoundError:
            print("matplotlib not installed; skipping plot.")
            return 0
        out = Path(args.input).with_suffix(".png")
        ax = df.plot.scatter(x="r_at_absorber_end", y="p_dca", c="track_type", cmap="coolwarm", alpha=0.6)
        ax.set_title("pDCA vs R at absorber end")
        plt.tight_layout()
        plt.savefig(out, dpi=120)
        print(f"Saved plot: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
