"""Example custom callback: count truth-matched candidates per origin."""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path


def process(candidates, context):
    labels = context["mc_rec"]
    if not labels:
        print("No truth labels (run with --do-mc); nothing to summarize.")
        return
    by_origin = Counter(label.origin.name for label in labels if label.is_signal)
    masses = [c.mass for c, label in zip(candidates, labels) if label.is_signal]
    summary = {
        "n_candidates": len(candidates),
        "n_matched": sum(by_origin.values()),
        "matched_by_origin": dict(by_origin),
        "matched_mass_mean": sum(masses) / len(masses) if masses else None,
        "n_generated_signal": sum(g.is_signal for g in context["mc_gen"]),
    }
    out = Path(context["output_path"]).with_name("truth_summary.json")
    out.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
