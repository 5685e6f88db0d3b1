"""Offline mass-peak study utility for chi_c candidate tables.

Intended for quick signal/background studies after running hf-chic-creator
over many events and writing a parquet/csv/pickle table. Works on the
mass difference m(chi_c) - m(J/psi), where the two chi_c states separate.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from hfcand import ChicDecay, make_chic1, make_chic2, make_jpsi

MASS_JPSI = make_jpsi().mass


@dataclass(frozen=True)
class ChannelConfig:
    """Channel-specific defaults for mass-window and sideband studies."""

    name: str
    delta_center: float
    signal_half_window: float
    sideband_inner: float
    sideband_outer: float
    query: str


def _channel(state, decay: ChicDecay, lepton: str) -> ChannelConfig:
    """The lepton channel comes from the flag, the chi_c state from the delta-mass window."""
    name = f"{state.name.replace('_', '')}_{lepton}"
    return ChannelConfig(
        name=name,
        delta_center=state.mass - MASS_JPSI,
        signal_half_window=0.020,
        sideband_inner=0.060,
        sideband_outer=0.150,
        query=f"hf_flag == {int(decay)}",
    )


CHANNELS: dict[str, ChannelConfig] = {
    ch.name: ch
    for ch in (
        _channel(make_chic1(), ChicDecay.JPSI_TO_EE_GAMMA, "ee"),
        _channel(make_chic2(), ChicDecay.JPSI_TO_EE_GAMMA, "ee"),
        _channel(make_chic1(), ChicDecay.JPSI_TO_MUMU_GAMMA, "mumu"),
        _channel(make_chic2(), ChicDecay.JPSI_TO_MUMU_GAMMA, "mumu"),
    )
}


def _require_pandas():
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required. Install with: pip install pandas pyarrow"
        ) from exc
    return pd


def load_table(path: str):
    """Load candidate table from parquet/csv/pickle."""
    pd = _require_pandas()
    p = Path(path)
    suffix = p.suffix.lower()
    if suffix == ".parquet":
        return pd.read_parquet(p)
    if suffix == ".csv":
        return pd.read_csv(p)
    if suffix in (".pkl", ".pickle"):
        return pd.read_pickle(p)
    raise ValueError("Supported input formats: .parquet, .csv, .pkl")


def apply_channel_selection(df, channel: ChannelConfig, extra_query: str | None):
    out = df.query(channel.query) if channel.query else df
    if extra_query:
        out = out.query(extra_query)
    return out


def estimate_signal_background(
    values,
    center: float,
    w_sig: float,
    w_sb_in: float,
    w_sb_out: float,
) -> dict[str, float]:
    """Estimate S/B from a signal window and two symmetric sidebands.

    Background under the peak is taken from the sideband density, assuming a
    locally flat background.
    """
    n_sig_window = float(((values >= center - w_sig) & (values <= center + w_sig)).sum())
    n_sb_left = float(((values >= center - w_sb_out) & (values <= center - w_sb_in)).sum())
    n_sb_right = float(((values >= center + w_sb_in) & (values <= center + w_sb_out)).sum())
    n_sb_total = n_sb_left + n_sb_right

    sideband_width = 2.0 * (w_sb_out - w_sb_in)
    bkg_in_signal = n_sb_total / sideband_width * 2.0 * w_sig if sideband_width > 0 else 0.0
    signal_est = n_sig_window - bkg_in_signal
    s_over_b = signal_est / bkg_in_signal if bkg_in_signal > 0 else 0.0
    total = signal_est + bkg_in_signal
    significance = signal_est / total**0.5 if total > 0 else 0.0

    return {
        "n_sig_window": n_sig_window,
        "n_sideband_left": n_sb_left,
        "n_sideband_right": n_sb_right,
        "bkg_in_signal_est": bkg_in_signal,
        "signal_est": signal_est,
        "s_over_b": s_over_b,
        "s_over_sqrt_s_plus_b": significance,
    }


def maybe_plot(values, center: float, w_sig: float, w_sb_in: float, w_sb_out: float, out_png: Path, bins: int) -> None:
    """Render a delta-mass histogram with signal/sideband window lines."""
    try:
        import matplotlib.pyplot as plt  # type: ignore
    except ModuleNotFoundError:
        print("matplotlib not installed; skipping plot.")
        return

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.hist(values, bins=bins, histtype="step", linewidth=1.4)
    ax.axvline(center - w_sig, color="green", linestyle="--", linewidth=1.2)
    ax.axvline(center + w_sig, color="green", linestyle="--", linewidth=1.2, label="signal window")
    for edge in (center - w_sb_out, center - w_sb_in, center + w_sb_in):
        ax.axvline(edge, color="orange", linestyle=":", linewidth=1.2)
    ax.axvline(center + w_sb_out, color="orange", linestyle=":", linewidth=1.2, label="sidebands")
    ax.set_xlabel("m(chi_c) - m(J/psi) [GeV]")
    ax.set_ylabel("Candidates")
    ax.set_title("Offline chi_c peak study")
    ax.legend()
    fig.tight_layout()
    fig.savefig(out_png, dpi=120)
    plt.close(fig)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Offline peak study from chi_c candidate tables.")
    parser.add_argument("--input", required=True, help="Input table (.parquet/.csv/.pkl).")
    parser.add_argument("--channel", default="chic1_ee", choices=sorted(CHANNELS), help="Channel preset.")
    parser.add_argument("--query", default=None, help="Additional pandas query, e.g. 'chi2_pca < 1e-4'.")
    parser.add_argument("--jpsi-mass", type=float, default=MASS_JPSI, help="Mass subtracted from the candidate mass.")
    parser.add_argument("--bins", type=int, default=100, help="Histogram bins if plotting.")
    parser.add_argument("--plot", action="store_true", help="Write a histogram PNG next to the input.")
    parser.add_argument("--out-json", default=None, help="Optional JSON summary output path.")
    args = parser.parse_args(argv)

    df = load_table(args.input)
    ch = CHANNELS[args.channel]
    selected = apply_channel_selection(df, ch, args.query)
    delta = selected["mass"] - args.jpsi_mass

    stats = estimate_signal_background(
        delta, ch.delta_center, ch.signal_half_window, ch.sideband_inner, ch.sideband_outer
    )
    summary: dict[str, Any] = {
        "channel": args.channel,
        "n_total_rows": int(len(df)),
        "n_selected_rows": int(len(selected)),
        "delta_center": ch.delta_center,
        **stats,
    }

    print(json.dumps(summary, indent=2))
    if args.out_json:
        Path(args.out_json).write_text(json.dumps(summary, indent=2), encoding="utf-8")
        print(f"Wrote summary: {args.out_json}")

    if args.plot:
        out_png = Path(args.input).with_suffix(f".{args.channel}.png")
        maybe_plot(
            delta, ch.delta_center, ch.signal_half_window, ch.sideband_inner, ch.sideband_outer, out_png, args.bins
        )
        print(f"Wrote plot: {out_png}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
