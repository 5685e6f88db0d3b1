"""Input/output helpers for JSON inputs and tabular result export."""

from __future__ import annotations

import json
from dataclasses import fields
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from .jets import TaggedJet
from .models import (
    Candidate,
    Collision,
    EventInput,
    FitterConfig,
    GeneratedParticle,
    IntermediateCandidate,
    IntermediateSelection,
    JetConfig,
    MatchingConfig,
    MatchResult,
    PartnerSelection,
    RunConfig,
    TrackState,
)
from .physics import pack_sym
from .pid import particle_hypothesis_from_name
from .truth import ParticleTable

_CONFIG_SECTIONS: dict[str, type] = {
    "fitter": FitterConfig,
    "intermediate_selection": IntermediateSelection,
    "partner_selection": PartnerSelection,
    "matching": MatchingConfig,
    "jets": JetConfig,
}

MATCH_COLUMNS: tuple[str, ...] = ("index", "flag", "origin", "channel")

JET_COLUMNS: tuple[str, ...] = (
    "event_id",
    "collision_id",
    "candidate_id",
    "jet_pt",
    "jet_eta",
    "jet_phi",
    "jet_energy",
    "jet_mass",
    "jet_r",
    "jet_area",
    "n_constituents",
    "constituent_ids",
    "candidate_status",
    "candidate_pt",
)

CANDIDATE_COLUMNS: tuple[str, ...] = (
    "event_id",
    "collision_id",
    "intermediate_id",
    "partner_track_id",
    "prong_ids",
    "hf_flag",
    "pv_x",
    "pv_y",
    "pv_z",
    "sv_x",
    "sv_y",
    "sv_z",
    "error_decay_length",
    "error_decay_length_xy",
    "chi2_pca",
    "impact_parameter0",
    "impact_parameter1",
    "error_impact_parameter0",
    "error_impact_parameter1",
    "mass",
    "pt",
    "eta",
    "decay_length",
    "decay_length_xy",
    "cpa",
    "cpa_xy",
    *(f"p{axis}_{label}" for label in ("prong0", "prong1") for axis in "xyz"),
    *(f"sv_cov_{name}" for name in ("xx", "xy", "yy", "xz", "yz", "zz")),
)


def load_events_json(path: str | Path) -> list[EventInput]:
    """Load multi-event input JSON into `EventInput` objects.

    Expected shape:
    {
      "events": [
        {
          "event_id": "...",
          "collision": {"x": ..., "y": ..., "z": ..., "cov": [6 values]},
          "tracks": [...],
          "intermediates": [...],
          "particles": [...],            # optional, simulation only
          "track_labels": {"trk": 3}     # optional, simulation only
        },
        ...
      ]
    }
    """
    data = _load_json(path)
    events_data = data.get("events")
    if not isinstance(events_data, list):
        raise ValueError("Events JSON must contain a list under key 'events'.")
    out: list[EventInput] = []
    for idx, event in enumerate(events_data):
        if not isinstance(event, dict):
            raise ValueError(f"Event entry at index {idx} must be an object.")
        event_id = str(event.get("event_id", f"evt{idx}"))
        context = f"event '{event_id}'"
        collision = _parse_collision(event.get("collision"), event_id, context)
        tracks_data = event.get("tracks")
        if not isinstance(tracks_data, list):
            raise ValueError(f"Event '{event_id}' must contain a list under key 'tracks'.")
        tracks = tuple(
            _parse_track_item(item=item, idx=tidx, context=context)
            for tidx, item in enumerate(tracks_data)
        )
        intermediates = tuple(
            _parse_intermediate_item(item=item, idx=cidx, context=context)
            for cidx, item in enumerate(_optional_list(event, "intermediates", context))
        )
        particles = tuple(
            _parse_particle_item(item=item, idx=pidx, context=context)
            for pidx, item in enumerate(_optional_list(event, "particles", context))
        )
        try:
            ParticleTable.from_particles(particles)
        except ValueError as exc:
            raise ValueError(f"Invalid particle links in {context}: {exc}") from exc
        track_labels = _parse_track_labels(event.get("track_labels", {}), context)
        out.append(
            EventInput(
                event_id=event_id,
                collision=collision,
                tracks=tracks,
                intermediates=intermediates,
                particles=particles,
                track_labels=track_labels,
            )
        )
    return out


def load_config_json(path: str | Path) -> RunConfig:
    """Load a `RunConfig` from JSON; every section and key is optional.

    Unknown sections or keys are rejected so that typos do not silently fall
    back to defaults.
    """
    data = _load_json(path)
    allowed = set(_CONFIG_SECTIONS) | {"partner_mass", "do_mc"}
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
    sections = {
        name: _build_section(cls, data.get(name, {}), name)
        for name, cls in _CONFIG_SECTIONS.items()
    }
    do_mc = data.get("do_mc", False)
    if not isinstance(do_mc, bool):
        raise ValueError("Config key 'do_mc' must be a boolean.")
    return RunConfig(
        partner_mass=_parse_mass(data.get("partner_mass", 0.0)),
        do_mc=do_mc,
        **sections,
    )


def write_candidates_table(path: str | Path, candidates: Sequence[Candidate]) -> None:
    """Write candidates into Parquet/CSV/Pickle table."""
    _write_table(path, _candidate_rows(candidates), CANDIDATE_COLUMNS)


def write_match_table(
    path: str | Path,
    results: Sequence[MatchResult],
    event_ids: Sequence[str] | None = None,
    indices: Sequence[int] | None = None,
) -> None:
    """Write truth labels into Parquet/CSV/Pickle table.

    `indices` defaults to the position in `results`; pass the per-event
    candidate or particle index together with `event_ids` when the stream
    spans several events.
    """
    if event_ids is not None and len(event_ids) != len(results):
        raise ValueError("event_ids must be index-aligned with results.")
    if indices is not None and len(indices) != len(results):
        raise ValueError("indices must be index-aligned with results.")
    rows: list[dict[str, Any]] = []
    for pos, res in enumerate(results):
        row: dict[str, Any] = {}
        if event_ids is not None:
            row["event_id"] = event_ids[pos]
        row["index"] = pos if indices is None else indices[pos]
        row["flag"] = int(res.flag)
        row["origin"] = int(res.origin)
        row["channel"] = int(res.channel)
        rows.append(row)
    columns = MATCH_COLUMNS if event_ids is None else ("event_id", *MATCH_COLUMNS)
    _write_table(path, rows, columns)


def write_jets_table(path: str | Path, jets: Sequence[TaggedJet]) -> None:
    rows = [
        {
            "event_id": jet.event_id,
            "collision_id": jet.collision_id,
            "candidate_id": jet.candidate_id,
            "jet_pt": jet.pt,
            "jet_eta": jet.eta,
            "jet_phi": jet.phi,
            "jet_energy": jet.energy,
            "jet_mass": jet.mass,
            "jet_r": jet.jet_r,
            "jet_area": jet.area,
            "n_constituents": jet.n_constituents,
            "constituent_ids": ",".join(jet.constituent_ids),
            "candidate_status": jet.candidate_status,
            "candidate_pt": jet.candidate_pt,
        }
        for jet in jets
    ]
    _write_table(path, rows, JET_COLUMNS)


def _write_table(path: str | Path, rows: list[dict[str, Any]], columns: Sequence[str]) -> None:
    pd = _require_pandas()
    # Explicit columns keep the header when there are no rows.
    df = pd.DataFrame(rows, columns=list(columns))
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


def _candidate_rows(candidates: Sequence[Candidate]) -> list[dict[str, Any]]:
    """Flatten candidates into DataFrame-ready row dictionaries."""
    rows: list[dict[str, Any]] = []
    for cand in candidates:
        row: dict[str, Any] = {
            "event_id": cand.event_id,
            "collision_id": cand.collision_id,
            "intermediate_id": cand.intermediate_id,
            "partner_track_id": cand.partner_track_id,
            "prong_ids": ",".join(cand.intermediate_prong_ids),
            "hf_flag": int(cand.hf_flag),
            "pv_x": cand.pv_xyz[0],
            "pv_y": cand.pv_xyz[1],
            "pv_z": cand.pv_xyz[2],
            "sv_x": cand.sv_xyz[0],
            "sv_y": cand.sv_xyz[1],
            "sv_z": cand.sv_xyz[2],
            "error_decay_length": cand.error_decay_length,
            "error_decay_length_xy": cand.error_decay_length_xy,
            "chi2_pca": cand.chi2_pca,
            "impact_parameter0": cand.impact_parameter0,
            "impact_parameter1": cand.impact_parameter1,
            "error_impact_parameter0": cand.error_impact_parameter0,
            "error_impact_parameter1": cand.error_impact_parameter1,
            "mass": cand.mass,
            "pt": cand.pt,
            "eta": cand.eta,
            "decay_length": cand.decay_length,
            "decay_length_xy": cand.decay_length_xy,
            "cpa": cand.cpa,
            "cpa_xy": cand.cpa_xy,
        }
        for label, p in (("prong0", cand.p_intermediate), ("prong1", cand.p_partner)):
            row[f"px_{label}"] = p[0]
            row[f"py_{label}"] = p[1]
            row[f"pz_{label}"] = p[2]
        for name, value in zip(("xx", "xy", "yy", "xz", "yz", "zz"), cand.sv_cov):
            row[f"sv_cov_{name}"] = value
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


def _build_section(cls: type, values: Any, section: str):
    """Instantiate a frozen config dataclass from a JSON object."""
    if not isinstance(values, dict):
        raise ValueError(f"Config section '{section}' must be an object.")
    defaults = cls()
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown keys in config section '{section}': {', '.join(unknown)}")
    kwargs = {
        name: _coerce(getattr(defaults, name), value, f"{section}.{name}")
        for name, value in values.items()
    }
    return cls(**kwargs)


def _parse_mass(value: Any) -> float:
    """Accept a mass in GeV or a particle name such as `gamma` or `pi`."""
    if isinstance(value, str):
        return particle_hypothesis_from_name(value).mass
    return float(value)


def _coerce(default: Any, value: Any, key: str) -> Any:
    """Convert a JSON value to the type of the field default."""
    if isinstance(default, Enum):
        enum_cls = type(default)
        try:
            if isinstance(value, str):
                return enum_cls[value.strip().upper()]
            return enum_cls(int(value))
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Invalid value {value!r} for config key '{key}'.") from exc
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ValueError(f"Config key '{key}' must be a boolean.")
        return value
    if isinstance(default, tuple):
        if not isinstance(value, list):
            raise ValueError(f"Config key '{key}' must be a list.")
        return tuple(int(v) for v in value)
    if default is None:
        return None if value is None else float(value)
    if isinstance(default, int):
        return int(value)
    return float(value)


def _parse_collision(item: Any, event_id: str, context: str) -> Collision:
    if not isinstance(item, dict):
        raise ValueError(f"Event '{event_id}' must contain an object under key 'collision'.")
    return Collision(
        collision_id=str(item.get("collision_id", event_id)),
        x=_float_field(item, "x", context),
        y=_float_field(item, "y", context),
        z=_float_field(item, "z", context),
        cov=_parse_packed_cov(item.get("cov"), 3, f"collision in {context}"),
    )


def _parse_track_item(item: Any, idx: int, context: str) -> TrackState:
    """Parse one track dictionary into a `TrackState`."""
    if not isinstance(item, dict):
        raise ValueError(f"Track entry at index {idx} in {context} must be an object.")
    where = f"track {idx} in {context}"
    if "track_id" not in item:
        raise ValueError(f"Missing field 'track_id' for {where}.")
    source_ids_raw = item.get("source_track_ids")
    if source_ids_raw is None:
        source_ids: tuple[str, ...] = ()
    else:
        if not isinstance(source_ids_raw, list):
            raise ValueError("Track field 'source_track_ids' must be a list of strings.")
        source_ids = tuple(str(x) for x in source_ids_raw)
    return TrackState(
        track_id=str(item["track_id"]),
        x=_float_field(item, "x", where),
        y=_float_field(item, "y", where),
        z=_float_field(item, "z", where),
        px=_float_field(item, "px", where),
        py=_float_field(item, "py", where),
        pz=_float_field(item, "pz", where),
        cov=_parse_packed_cov(item.get("cov"), 6, where),
        charge=_int_field(item, "charge", where, default=0),
        source_track_ids=source_ids,
    )


def _parse_intermediate_item(item: Any, idx: int, context: str) -> IntermediateCandidate:
    if not isinstance(item, dict):
        raise ValueError(f"Intermediate entry at index {idx} in {context} must be an object.")
    where = f"intermediate {idx} in {context}"
    prongs = item.get("prong_ids")
    if not isinstance(prongs, list) or len(prongs) != 2:
        raise ValueError(f"Field 'prong_ids' for {where} must be a list of two track ids.")
    rapidity = item.get("rapidity")
    return IntermediateCandidate(
        candidate_id=str(item.get("candidate_id", f"cand{idx}")),
        x=_float_field(item, "x", where),
        y=_float_field(item, "y", where),
        z=_float_field(item, "z", where),
        px=_float_field(item, "px", where),
        py=_float_field(item, "py", where),
        pz=_float_field(item, "pz", where),
        prong_ids=(str(prongs[0]), str(prongs[1])),
        hf_flag=_int_field(item, "hf_flag", where, default=0),
        selection_flag=_int_field(item, "selection_flag", where, default=0),
        selection_flag_bar=_int_field(item, "selection_flag_bar", where, default=0),
        rapidity=None if rapidity is None else float(rapidity),
    )


def _parse_particle_item(item: Any, idx: int, context: str) -> GeneratedParticle:
    if not isinstance(item, dict):
        raise ValueError(f"Particle entry at index {idx} in {context} must be an object.")
    where = f"particle {idx} in {context}"
    return GeneratedParticle(
        index=_int_field(item, "index", where, default=idx),
        pdg_code=_int_field(item, "pdg_code", where),
        mother_indices=_index_list(item, "mother_indices", where),
        daughter_indices=_index_list(item, "daughter_indices", where),
        vx=float(item.get("vx", 0.0)),
        vy=float(item.get("vy", 0.0)),
        vz=float(item.get("vz", 0.0)),
        px=float(item.get("px", 0.0)),
        py=float(item.get("py", 0.0)),
        pz=float(item.get("pz", 0.0)),
    )


def _parse_packed_cov(value: Any, dim: int, where: str) -> tuple[float, ...]:
    """Accept a packed lower-triangular list or a full nested `dim x dim` list."""
    n_packed = dim * (dim + 1) // 2
    if isinstance(value, list) and len(value) == n_packed and all(
        isinstance(v, (int, float)) for v in value
    ):
        return tuple(float(v) for v in value)
    if isinstance(value, list) and len(value) == dim and all(
        isinstance(row, list) and len(row) == dim for row in value
    ):
        return pack_sym([[float(v) for v in row] for row in value])
    raise ValueError(
        f"Covariance for {where} must be a list of {n_packed} values or a {dim}x{dim} list."
    )


def _float_field(item: dict[str, Any], key: str, where: str) -> float:
    if key not in item:
        raise ValueError(f"Missing field '{key}' for {where}.")
    try:
        return float(item[key])
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Field '{key}' for {where} must be a number.") from exc


_MISSING = object()


def _int_field(item: dict[str, Any], key: str, where: str, default: Any = _MISSING) -> int:
    """Read an integer field; integral floats are accepted, booleans are not."""
    if key not in item or item[key] is None:
        if default is _MISSING:
            raise ValueError(f"Missing field '{key}' for {where}.")
        return default
    value = item[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Field '{key}' for {where} must be an integer.")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"Field '{key}' for {where} must be an integer.")
    return int(value)


def _index_list(item: dict[str, Any], key: str, where: str) -> tuple[int, ...]:
    values = item.get(key)
    if values is None:
        return ()
    if not isinstance(values, list):
        raise ValueError(f"Field '{key}' for {where} must be a list of integers.")
    return tuple(
        _int_field({key: v}, key, f"{where} (position {pos})") for pos, v in enumerate(values)
    )


def _parse_track_labels(value: Any, context: str) -> dict[str, int]:
    """Map track ids to generated-particle indices; null labels mark unmatched tracks."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Field 'track_labels' in {context} must be an object.")
    labels: dict[str, int] = {}
    for track_id, label in value.items():
        if label is None:
            continue
        labels[str(track_id)] = _int_field(
            {"track_labels": label}, "track_labels", f"track '{track_id}' in {context}"
        )
    return labels


def _optional_list(data: dict[str, Any], key: str, context: str) -> list[Any]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ValueError(f"Field '{key}' in {context} must be a list.")
    return value


def _load_json(path: str | Path) -> dict[str, Any]:
    """Read and validate a JSON object document from disk."""
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"JSON document at {path} must be an object.")
    return data
