"""Multi-event API example: build chi_c candidates and tag D0 jets.

Run from repository root without installation:
    PYTHONPATH=src python examples/multi_event_api.py
"""

from __future__ import annotations

from pathlib import Path

from hfcand import CandidateBuilder, FitterConfig, HFJetTagger, HistogramReporter, JetConfig
from hfcand.io import load_events_json, write_candidates_table, write_jets_table


def main() -> int:
    """Load events, build candidates, tag jets, and write parquet tables."""
    events = load_events_json("examples/output_chic_events.json")
    reporter = HistogramReporter()
    candidates = CandidateBuilder(fitter_config=FitterConfig(bz=5.0), reporter=reporter).build_events(events)
    out_path = Path("examples/multi_event_candidates.parquet")
    write_candidates_table(out_path, candidates)
    print(f"Wrote {len(candidates)} candidates to {out_path}")

    jets = HFJetTagger(JetConfig(jet_r=0.4), reporter=reporter).tag_events(events)
    jets_path = Path("examples/multi_event_jets.parquet")
    write_jets_table(jets_path, jets)
    print(f"Wrote {len(jets)} jets to {jets_path}")
    print("Mass histogram (3.3-3.8 GeV, 10 bins):", reporter.histogram("mass_candidate", 10, 3.3, 3.8))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
