"""Command-line interface for building chi_c candidates from event inputs."""

from __future__ import annotations

import argparse
import dataclasses
import importlib.util
import json
import logging
from pathlib import Path
from typing import Any

from .builder import CandidateBuilder
from .io import (
    load_config_json,
    load_events_json,
    write_candidates_table,
    write_jets_table,
    write_match_table,
)
from .jets import HFJetTagger
from .models import Candidate, RunConfig
from .monitoring import HistogramReporter
from .truth import TruthMatcher

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Define and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="hf-chic-creator",
        description="Build chi_c candidates from J/psi candidates and tracks, with optional truth matching.",
    )
    parser.add_argument("--events", required=True, help="Input JSON with key 'events'.")
    parser.add_argument(
        "--config",
        default=None,
        help="Optional JSON with fitter/intermediate_selection/partner_selection/matching/jets sections.",
    )
    parser.add_argument(
        "--out",
        required=True,
        help="Output table file for candidates (.parquet, .csv, .pkl).",
    )
    parser.add_argument("--mc-rec-out", default=None, help="Output table for reconstructed-side truth labels.")
    parser.add_argument("--mc-gen-out", default=None, help="Output table for generated-side truth labels.")
    parser.add_argument(
        "--jets-out",
        default=None,
        help="Output table for heavy-flavour tagged jets (requires fastjet).",
    )
    parser.add_argument(
        "--monitoring-out",
        default=None,
        help="Optional JSON file with monitoring summaries (entries, mean, rms, counters).",
    )
    parser.add_argument(
        "--do-mc",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Run truth matching (overrides the config 'do_mc' switch).",
    )
    parser.add_argument("--bz", type=float, default=None, help="Magnetic field along z in kG.")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    parser.add_argument(
        "--custom-script",
        default=None,
        help="Path to Python file with process(candidates, context) function.",
    )
    return parser


def resolve_config(args: argparse.Namespace) -> RunConfig:
    """Merge the optional config file with command-line overrides."""
    config = load_config_json(args.config) if args.config else RunConfig()
    if args.bz is not None:
        config = dataclasses.replace(config, fitter=dataclasses.replace(config.fitter, bz=args.bz))
    if args.do_mc is not None:
        config = dataclasses.replace(config, do_mc=args.do_mc)
    if (args.mc_rec_out or args.mc_gen_out) and not config.do_mc:
        raise ValueError("--mc-rec-out/--mc-gen-out need truth matching; pass --do-mc.")
    return config


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint: load inputs, build candidates, write tables, optional hooks."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = resolve_config(args)
    events = load_events_json(args.events)
    reporter = HistogramReporter()

    builder = CandidateBuilder(
        fitter_config=config.fitter,
        selection=config.intermediate_selection,
        partner_selection=config.partner_selection,
        partner_mass=config.partner_mass,
        reporter=reporter,
    )
    matcher = TruthMatcher(config.matching) if config.do_mc else None

    candidates: list[Candidate] = []
    rec_labels, rec_events, rec_indices = [], [], []
    gen_labels, gen_events, gen_indices = [], [], []
    for event in events:
        event_candidates = builder.build(event)
        candidates.extend(event_candidates)
        if matcher is None:
            continue
        reco, gen = matcher.match_event(event, event_candidates)
        rec_labels.extend(reco)
        rec_events.extend([event.event_id] * len(reco))
        rec_indices.extend(range(len(reco)))
        gen_labels.extend(gen)
        gen_events.extend([event.event_id] * len(gen))
        gen_indices.extend(range(len(gen)))
    logger.info("Built %d candidates from %d events", len(candidates), len(events))

    write_candidates_table(args.out, candidates)
    if args.mc_rec_out:
        write_match_table(args.mc_rec_out, rec_labels, rec_events, rec_indices)
    if args.mc_gen_out:
        write_match_table(args.mc_gen_out, gen_labels, gen_events, gen_indices)

    jets = []
    if args.jets_out:
        jets = HFJetTagger(config.jets, reporter=reporter).tag_events(events)
        write_jets_table(args.jets_out, jets)

    if args.monitoring_out:
        Path(args.monitoring_out).write_text(
            json.dumps(reporter.summary(), indent=2, sort_keys=True), encoding="utf-8"
        )

    if args.custom_script:
        run_custom_script(
            script_path=args.custom_script,
            candidates=candidates,
            context={
                "events_path": args.events,
                "config": config,
                "reporter": reporter,
                "mc_rec": rec_labels,
                "mc_gen": gen_labels,
                "jets": jets,
                "output_path": args.out,
            },
        )
    return 0


def run_custom_script(
    script_path: str, candidates: list[Candidate], context: dict[str, Any]
) -> None:
    """Execute user-supplied post-processing callback `process(candidates, context)`."""
    module = _load_module(script_path)
    process = getattr(module, "process", None)
    if process is None or not callable(process):
        raise ValueError(
            f"Custom script {script_path} must define callable process(candidates, context)."
        )
    process(candidates, context)


def _load_module(script_path: str):
    """Import a Python module from an arbitrary file path."""
    path = Path(script_path)
    spec = importlib.util.spec_from_file_location(path.stem, path)
    if spec is None or spec.loader is None:
        raise ValueError(f"Cannot import custom script: {script_path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


if __name__ == "__main__":
    raise SystemExit(main())
