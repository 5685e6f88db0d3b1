"""Example custom callback: rank candidates and persist a top-N summary."""

from __future__ import annotations

import json
from pathlib import Path


def process(candidates, context):
    """Sort by decay-length significance and save the top candidates."""

    def significance(c):
        return c.decay_length / c.error_decay_length if c.error_decay_length > 0 else 0.0

    ranked = sorted(candidates, key=significance, reverse=True)
    payload = {
        "n_total": len(candidates),
        "top_candidates": [
            {
                "event_id": c.event_id,
                "track_ids": list(c.track_ids()),
                "mass": c.mass,
                "pt": c.pt,
                "decay_length_significance": significance(c),
                "chi2_pca": c.chi2_pca,
            }
            for c in ranked[:3]
        ],
    }
    out = Path(context["output_path"]).with_name("top_candidates.json")
    out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote {out}")
