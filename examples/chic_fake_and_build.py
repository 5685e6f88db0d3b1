"""End-to-end synthetic walkthrough for chi_c1 -> J/psi(e+ e-) pi+ studies.

This script does three steps:
1. Generate a fake event sample with configurable signal fraction, including
   the generated particle table and track labels.
2. Build chi_c candidates and truth-match them on each event.
3. Write an analysis table (pandas DataFrame) for downstream plotting/studies.

The charged pion stands in for the photon partner, so the builder is run with
the pion mass as partner mass.

Run from repository root:
    PYTHONPATH=src python3 examples/chic_fake_and_build.py
"""

from __future__ import annotations

import argparse
import json
import math
from pathlib import Path
from random import Random
from typing import Any

from hfcand import (
    CandidateBuilder,
    Collision,
    EventInput,
    GeneratedParticle,
    HistogramReporter,
    IntermediateCandidate,
    TrackState,
    TruthMatcher,
    TwoProngDecay,
    make_chic1,
    make_electron,
    make_jpsi,
    make_pion,
)
from hfcand.physics import pack_sym

MASS_E = make_electron().mass
MASS_PI = make_pion().mass
MASS_JPSI = make_jpsi().mass
MASS_CHIC1 = make_chic1().mass

# Decay length of the displaced source in cm; prompt chi_c decays at the PV.
C_TAU_DISPLACED_CM = 0.0455
POS_SIGMA_CM = 0.002

FourVector = tuple[float, float, float, float]


def parse_args() -> argparse.Namespace:
    """Parse CLI options for fake-data generation and candidate building."""
    parser = argparse.ArgumentParser(
        description="Generate a synthetic chi_c1 -> J/psi pi sample and build candidates."
    )
    parser.add_argument("--n-events", type=int, default=500, help="Number of events to generate.")
    parser.add_argument(
        "--signal-fraction",
        type=float,
        default=0.25,
        help="Fraction of events containing one truth chi_c1 decay.",
    )
    parser.add_argument(
        "--non-prompt-fraction",
        type=float,
        default=0.3,
        help="Fraction of signal decays produced in a displaced B0 decay.",
    )
    parser.add_argument("--seed", type=int, default=20443, help="RNG seed for reproducibility.")
    parser.add_argument(
        "--out-events",
        default="examples/output_chic_events.json",
        help="Output JSON with generated events (input schema of hf-chic-creator).",
    )
    parser.add_argument(
        "--out-candidates",
        default="examples/output_chic_candidates.parquet",
        help="Output candidates table (.parquet/.csv/.pkl).",
    )
    return parser.parse_args()


def _require_pandas():
    """Import pandas with an actionable install hint."""
    try:
        import pandas as pd  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "pandas is required for this walkthrough. Install pandas and pyarrow."
        ) from exc
    return pd


def random_unit_vector(rng: Random) -> tuple[float, float, float]:
    cos_theta = rng.uniform(-1.0, 1.0)
    sin_theta = math.sqrt(max(0.0, 1.0 - cos_theta * cos_theta))
    phi = rng.uniform(0.0, 2.0 * math.pi)
    return sin_theta * math.cos(phi), sin_theta * math.sin(phi), cos_theta


def two_body_momentum(parent_mass: float, m1: float, m2: float) -> float:
    """Return daughter momentum magnitude in parent rest frame."""
    term = (parent_mass**2 - (m1 + m2) ** 2) * (parent_mass**2 - (m1 - m2) ** 2)
    if term <= 0.0:
        return 0.0
    return math.sqrt(term) / (2.0 * parent_mass)


def lorentz_boost(p4: FourVector, beta: tuple[float, float, float]) -> FourVector:
    """Boost a four-vector `(E, px, py, pz)` by beta vector."""
    e, px, py, pz = p4
    bx, by, bz = beta
    b2 = bx * bx + by * by + bz * bz
    if b2 <= 0.0:
        return p4
    gamma = 1.0 / math.sqrt(max(1e-16, 1.0 - b2))
    bp = bx * px + by * py + bz * pz
    gamma2 = (gamma - 1.0) / b2
    return (
        gamma * (e + bp),
        px + gamma2 * bp * bx + gamma * e * bx,
        py + gamma2 * bp * by + gamma * e * by,
        pz + gamma2 * bp * bz + gamma * e * bz,
    )


def decay_two_body(parent_p4: FourVector, m1: float, m2: float, rng: Random) -> tuple[FourVector, FourVector]:
    """Generate a two-body decay and return daughter four-vectors in lab frame."""
    e, px, py, pz = parent_p4
    parent_mass = math.sqrt(max(0.0, e * e - px * px - py * py - pz * pz))
    p = two_body_momentum(parent_mass, m1, m2)
    u = random_unit_vector(rng)
    d1 = (math.sqrt(m1 * m1 + p * p), p * u[0], p * u[1], p * u[2])
    d2 = (math.sqrt(m2 * m2 + p * p), -p * u[0], -p * u[1], -p * u[2])
    beta = (px / e, py / e, pz / e)
    return lorentz_boost(d1, beta), lorentz_boost(d2, beta)


def _track_cov(pos_sigma: float, mom_sigma: float) -> tuple[float, ...]:
    diag = [pos_sigma**2] * 3 + [mom_sigma**2] * 3
    return pack_sym([[diag[i] if i == j else 0.0 for j in range(6)] for i in range(6)])


def make_track(
    track_id: str,
    p4: FourVector,
    origin: tuple[float, float, float],
    charge: int,
    rng: Random,
) -> TrackState:
    """Smeared track parametrised at its production point."""
    _, px, py, pz = p4
    p = math.sqrt(px * px + py * py + pz * pz)
    scale = rng.gauss(1.0, 0.005)
    return TrackState(
        track_id=track_id,
        x=origin[0] + rng.gauss(0.0, POS_SIGMA_CM),
        y=origin[1] + rng.gauss(0.0, POS_SIGMA_CM),
        z=origin[2] + rng.gauss(0.0, POS_SIGMA_CM),
        px=px * scale,
        py=py * scale,
        pz=pz * scale,
        cov=_track_cov(POS_SIGMA_CM, 0.005 * p),
        charge=charge,
    )


def sample_collision(event_id: str, rng: Random) -> Collision:
    return Collision(
        collision_id=f"{event_id}_col0",
        x=rng.gauss(0.0, 0.001),
        y=rng.gauss(0.0, 0.001),
        z=rng.gauss(0.0, 3.0),
        cov=(1e-6, 0.0, 1e-6, 0.0, 0.0, 4e-6),
    )


def generate_signal(event_id: str, collision: Collision, non_prompt: bool, rng: Random):
    """One chi_c1 -> J/psi(e- e+) pi+ decay with its particle table and labels."""
    pt = rng.uniform(2.0, 10.0)
    phi = rng.uniform(0.0, 2.0 * math.pi)
    pz = pt * math.sinh(rng.uniform(-0.8, 0.8))
    px, py = pt * math.cos(phi), pt * math.sin(phi)
    p = math.sqrt(px * px + py * py + pz * pz)
    chic_p4 = (math.sqrt(MASS_CHIC1**2 + p * p), px, py, pz)

    vertex = collision.position
    if non_prompt:
        flight = rng.expovariate(1.0 / C_TAU_DISPLACED_CM) * p / MASS_CHIC1
        vertex = tuple(v + flight * c / p for v, c in zip(vertex, (px, py, pz)))

    jpsi_p4, pi_p4 = decay_two_body(chic_p4, MASS_JPSI, MASS_PI, rng)
    e_minus_p4, e_plus_p4 = decay_two_body(jpsi_p4, MASS_E, MASS_E, rng)

    tracks = [
        make_track(f"{event_id}_sig_eminus", e_minus_p4, vertex, -1, rng),
        make_track(f"{event_id}_sig_eplus", e_plus_p4, vertex, 1, rng),
        make_track(f"{event_id}_sig_piplus", pi_p4, vertex, 1, rng),
    ]
    jpsi_px = tracks[0].px + tracks[1].px
    jpsi_py = tracks[0].py + tracks[1].py
    jpsi_pz = tracks[0].pz + tracks[1].pz
    jpsi = IntermediateCandidate(
        candidate_id=f"{event_id}_jpsi0",
        x=vertex[0],
        y=vertex[1],
        z=vertex[2],
        px=jpsi_px,
        py=jpsi_py,
        pz=jpsi_pz,
        prong_ids=(tracks[0].track_id, tracks[1].track_id),
        hf_flag=1 << int(TwoProngDecay.JPSI_TO_EE),
        selection_flag=1,
    )

    # (pdg, mother) in decay order; an optional B0 sits on top of the chain.
    chain = [(20443, None), (443, 0), (211, 0), (11, 1), (-11, 1)]
    if non_prompt:
        chain = [(511, None)] + [(pdg, 0 if mother is None else mother + 1) for pdg, mother in chain]
    particles = _particles_from_chain(chain)
    offset = len(chain) - 5
    labels = {
        tracks[0].track_id: offset + 3,
        tracks[1].track_id: offset + 4,
        tracks[2].track_id: offset + 2,
    }
    return tracks, jpsi, particles, labels


def _particles_from_chain(chain: list[tuple[int, int | None]]) -> list[GeneratedParticle]:
    daughters: dict[int, list[int]] = {i: [] for i in range(len(chain))}
    for i, (_, mother) in enumerate(chain):
        if mother is not None:
            daughters[mother].append(i)
    return [
        GeneratedParticle(
            index=i,
            pdg_code=pdg,
            mother_indices=() if mother is None else (mother,),
            daughter_indices=tuple(daughters[i]),
        )
        for i, (pdg, mother) in enumerate(chain)
    ]


def generate_background_tracks(event_id: str, collision: Collision, n: int, rng: Random) -> list[TrackState]:
    """Prompt pion-like tracks from the collision."""
    out: list[TrackState] = []
    for i in range(n):
        u = random_unit_vector(rng)
        p = rng.uniform(0.3, 5.0)
        p4 = (math.sqrt(p * p + MASS_PI**2), p * u[0], p * u[1], p * u[2])
        out.append(make_track(f"{event_id}_bg_{i:02d}", p4, collision.position, rng.choice((-1, 1)), rng))
    return out


def generate_events(n_events: int, signal_fraction: float, non_prompt_fraction: float, rng: Random) -> list[EventInput]:
    n_signal = max(0, min(n_events, int(round(n_events * signal_fraction))))
    signal_indices = set(rng.sample(range(n_events), n_signal))
    events: list[EventInput] = []
    for idx in range(n_events):
        event_id = f"evt{idx:04d}"
        collision = sample_collision(event_id, rng)
        tracks: list[TrackState] = []
        intermediates: list[IntermediateCandidate] = []
        particles: list[GeneratedParticle] = []
        labels: dict[str, int] = {}
        if idx in signal_indices:
            sig_tracks, jpsi, particles, labels = generate_signal(
                event_id, collision, rng.random() < non_prompt_fraction, rng
            )
            tracks.extend(sig_tracks)
            intermediates.append(jpsi)
        tracks.extend(generate_background_tracks(event_id, collision, rng.randint(3, 8), rng))
        rng.shuffle(tracks)
        events.append(
            EventInput(
                event_id=event_id,
                collision=collision,
                tracks=tuple(tracks),
                intermediates=tuple(intermediates),
                particles=tuple(particles),
                track_labels=labels,
            )
        )
    return events


def write_events_json(path: str, events: list[EventInput]) -> None:
    """Write generated events into the `events` JSON schema read by the CLI."""

    def _track(t: TrackState) -> dict[str, Any]:
        return {
            "track_id": t.track_id,
            "x": t.x,
            "y": t.y,
            "z": t.z,
            "px": t.px,
            "py": t.py,
            "pz": t.pz,
            "cov": list(t.cov),
            "charge": t.charge,
        }

    data = {
        "events": [
            {
                "event_id": event.event_id,
                "collision": {
                    "collision_id": event.collision.collision_id,
                    "x": event.collision.x,
                    "y": event.collision.y,
                    "z": event.collision.z,
                    "cov": list(event.collision.cov),
                },
                "tracks": [_track(t) for t in event.tracks],
                "intermediates": [
                    {
                        "candidate_id": c.candidate_id,
                        "x": c.x,
                        "y": c.y,
                        "z": c.z,
                        "px": c.px,
                        "py": c.py,
                        "pz": c.pz,
                        "prong_ids": list(c.prong_ids),
                        "hf_flag": c.hf_flag,
                        "selection_flag": c.selection_flag,
                    }
                    for c in event.intermediates
                ],
                "particles": [
                    {
                        "index": p.index,
                        "pdg_code": p.pdg_code,
                        "mother_indices": list(p.mother_indices),
                        "daughter_indices": list(p.daughter_indices),
                    }
                    for p in event.particles
                ],
                "track_labels": dict(event.track_labels),
            }
            for event in events
        ]
    }
    Path(path).write_text(json.dumps(data, indent=2), encoding="utf-8")


def build_and_match(events: list[EventInput]):
    """Run the candidate builder and truth matching; return a DataFrame and the reporter."""
    reporter = HistogramReporter()
    builder = CandidateBuilder(partner_mass=MASS_PI, reporter=reporter)
    matcher = TruthMatcher()
    rows: list[dict[str, Any]] = []
    for event in events:
        candidates = builder.build(event)
        labels, _ = matcher.match_event(event, candidates)
        for cand, label in zip(candidates, labels, strict=True):
            rows.append(
                {
                    "event_id": cand.event_id,
                    "partner_track_id": cand.partner_track_id,
                    "mass": cand.mass,
                    "delta_mass": cand.mass - MASS_JPSI,
                    "pt": cand.pt,
                    "decay_length": cand.decay_length,
                    "error_decay_length": cand.error_decay_length,
                    "chi2_pca": cand.chi2_pca,
                    "impact_parameter_product": cand.impact_parameter_product,
                    "is_truth": label.is_signal,
                    "origin": int(label.origin),
                }
            )
    pd = _require_pandas()
    return pd.DataFrame(rows), reporter


def write_dataframe(path: str, df) -> None:
    """Write DataFrame to parquet/csv/pickle according to file suffix."""
    out = Path(path)
    suffix = out.suffix.lower()
    if suffix == ".parquet":
        df.to_parquet(out, index=False)
    elif suffix == ".csv":
        df.to_csv(out, index=False)
    elif suffix in (".pkl", ".pickle"):
        df.to_pickle(out)
    else:
        raise ValueError("Use .parquet, .csv, or .pkl extension for output table.")


def summarize_dataframe(df, reporter: HistogramReporter) -> dict[str, Any]:
    """Build a compact summary for quick terminal inspection."""
    if df.empty:
        return {"n_rows_total": 0, "counters": dict(reporter.counters)}
    truth = df[df["is_truth"]]
    return {
        "n_rows_total": int(len(df)),
        "n_truth_rows": int(len(truth)),
        "n_truth_by_origin": {str(k): int(v) for k, v in truth.groupby("origin").size().items()},
        "truth_mass_mean": float(truth["mass"].mean()) if len(truth) else None,
        "counters": dict(reporter.counters),
    }


def main() -> int:
    """Generate fake data, build and match candidates, and save DataFrame outputs."""
    args = parse_args()
    rng = Random(args.seed)

    events = generate_events(args.n_events, args.signal_fraction, args.non_prompt_fraction, rng)
    write_events_json(args.out_events, events)

    df, reporter = build_and_match(events)
    write_dataframe(args.out_candidates, df)

    summary = summarize_dataframe(df, reporter)
    summary_path = str(Path(args.out_candidates).with_suffix(".summary.json"))
    Path(summary_path).write_text(json.dumps(summary, indent=2), encoding="utf-8")

    print("Synthetic walkthrough completed.")
    print(f"Events JSON: {args.out_events}")
    print(f"Candidates table: {args.out_candidates}")
    print(f"Summary JSON: {summary_path}")
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
