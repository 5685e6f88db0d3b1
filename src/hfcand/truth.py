"""Simulation-truth matching over an index-addressed generated-particle table.

All walks are explicit bounded loops over integer indices: a depth bound of
`max_depth < 0` means unbounded, and a visited set protects against malformed
(cyclic) link structures. Misses are returned as `None`, never as sentinels.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping, Sequence

from .models import Candidate, EventInput, GeneratedParticle, MatchingConfig, MatchResult
from .pid import CHANNEL_FOR_PDG, LEPTON_PDG_FOR_DECAY, ChicDecay, DecayChannel, Origin, is_beauty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParticleTable:
    """Read-only arena of generated particles; `particles[i].index == i`."""

    particles: tuple[GeneratedParticle, ...]

    def __post_init__(self) -> None:
        n = len(self.particles)
        for position, particle in enumerate(self.particles):
            if particle.index != position:
                raise ValueError(
                    f"Particle at position {position} declares index {particle.index}."
                )
            for link in (*particle.mother_indices, *particle.daughter_indices):
                if not 0 <= link < n:
                    raise ValueError(
                        f"Particle {position} links to index {link} outside [0, {n})."
                    )

    @classmethod
    def from_particles(cls, particles: Sequence[GeneratedParticle]) -> "ParticleTable":
        return cls(tuple(particles))

    def __len__(self) -> int:
        return len(self.particles)

    def __getitem__(self, index: int) -> GeneratedParticle:
        return self.particles[index]

    def __iter__(self) -> Iterator[GeneratedParticle]:
        return iter(self.particles)

    def first_mother(self, index: int) -> int | None:
        mothers = self.particles[index].mother_indices
        return mothers[0] if mothers else None


@dataclass(frozen=True)
class AncestorMatch:
    """Ancestor found by a walk: its index, generation distance and PDG sign."""

    index: int
    depth: int
    sign: int = 1


def _walk_mothers(table: ParticleTable, index: int, max_depth: int) -> Iterator[tuple[int, int]]:
    visited = {index}
    current = index
    depth = 0
    while max_depth < 0 or depth < max_depth:
        mother = table.first_mother(current)
        if mother is None or mother in visited:
            return
        depth += 1
        visited.add(mother)
        yield mother, depth
        current = mother


def find_ancestor(
    table: ParticleTable,
    index: int,
    predicate: Callable[[GeneratedParticle], bool],
    max_depth: int = -1,
) -> AncestorMatch | None:
    """First ancestor (not the particle itself) satisfying `predicate`."""
    for mother, depth in _walk_mothers(table, index, max_depth):
        if predicate(table[mother]):
            return AncestorMatch(index=mother, depth=depth)
    return None


def find_mother(
    table: ParticleTable,
    index: int,
    pdg: int,
    accept_antiparticles: bool = True,
    max_depth: int = -1,
) -> AncestorMatch | None:
    """First ancestor with PDG code `pdg` (or `-pdg` when antiparticles are accepted)."""
    for mother, depth in _walk_mothers(table, index, max_depth):
        code = table[mother].pdg_code
        if code == pdg:
            return AncestorMatch(index=mother, depth=depth, sign=1)
        if accept_antiparticles and code == -pdg:
            return AncestorMatch(index=mother, depth=depth, sign=-1)
    return None


def collect_daughters(
    table: ParticleTable,
    index: int,
    max_depth: int = -1,
    final_pdgs: Sequence[int] = (),
) -> list[int]:
    """Indices of the final-state descendants of `index`, in decay order.

    A descendant is final when it has no daughters, sits at `max_depth`
    generations below `index`, or its |PDG| is listed in `final_pdgs`.
    The starting particle itself is never returned.
    """
    stop_codes = {abs(code) for code in final_pdgs}
    out: list[int] = []
    visited = {index}
    stack = [(d, 1) for d in reversed(table[index].daughter_indices)]
    while stack:
        current, depth = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        particle = table[current]
        final = (
            not particle.daughter_indices
            or (max_depth >= 0 and depth >= max_depth)
            or abs(particle.pdg_code) in stop_codes
        )
        if final:
            out.append(current)
            continue
        stack.extend((d, depth + 1) for d in reversed(particle.daughter_indices))
    return out


def _match_codes(codes: Sequence[int], expected: Sequence[int], sign: int) -> bool:
    remaining = list(expected)
    for code in codes:
        for k, want in enumerate(remaining):
            if code == sign * want:
                del remaining[k]
                break
        else:
            return False
    return not remaining


def match_generated_decay(
    table: ParticleTable,
    index: int,
    pdg: int,
    daughter_pdgs: Sequence[int],
    accept_antiparticles: bool = True,
    max_depth: int = 1,
) -> int | None:
    """Check that particle `index` is `pdg` decaying exactly into `daughter_pdgs`.

    Returns the matched sign (+1 particle, -1 antiparticle) or `None`.
    """
    code = table[index].pdg_code
    if code == pdg:
        sign = 1
    elif accept_antiparticles and code == -pdg:
        sign = -1
    else:
        return None
    daughters = collect_daughters(table, index, max_depth, daughter_pdgs)
    if len(daughters) != len(daughter_pdgs):
        return None
    if not _match_codes([table[d].pdg_code for d in daughters], daughter_pdgs, sign):
        return None
    return sign


def match_reconstructed_decay(
    table: ParticleTable,
    labels: Sequence[int | None],
    pdg: int,
    daughter_pdgs: Sequence[int],
    accept_antiparticles: bool = True,
    max_depth: int = 2,
) -> AncestorMatch | None:
    """Find the common `pdg` mother of the particles behind reconstructed tracks.

    `labels` are the generated-particle indices of the reconstructed daughters
    (`None` when a track has no truth label). The mother is searched from the
    first label; its final-state descendants must be exactly the labelled
    particles with the expected PDG codes.
    """
    if not labels or len(labels) != len(daughter_pdgs):
        return None
    if any(label is None or not 0 <= label < len(table) for label in labels):
        return None
    if len(set(labels)) != len(labels):
        return None
    mother = find_mother(table, labels[0], pdg, accept_antiparticles, max_depth)
    if mother is None:
        return None
    descendants = set(collect_daughters(table, mother.index, max_depth, daughter_pdgs))
    if len(descendants) != len(daughter_pdgs) or not descendants.issuperset(labels):
        return None
    if not _match_codes([table[label].pdg_code for label in labels], daughter_pdgs, mother.sign):
        return None
    return mother


def classify_origin(table: ParticleTable, index: int, max_depth: int = 10) -> Origin:
    """NON_PROMPT when a beauty quark or hadron is an ancestor within `max_depth`."""
    beauty = find_ancestor(table, index, lambda p: is_beauty(p.pdg_code), max_depth)
    return Origin.PROMPT if beauty is None else Origin.NON_PROMPT


@dataclass
class TruthMatcher:
    """Label reconstructed candidates and generated particles with truth info."""

    config: MatchingConfig = field(default_factory=MatchingConfig)

    def _reco_daughter_pdgs(self, lepton: int) -> tuple[int, int, int]:
        return (self.config.partner_pdg, lepton, -lepton)

    def match_candidate(
        self,
        candidate: Candidate,
        table: ParticleTable,
        track_labels: Mapping[str, int],
    ) -> MatchResult:
        cfg = self.config
        labels = [track_labels.get(tid) for tid in candidate.track_ids()]
        for decay in ChicDecay:
            expected = self._reco_daughter_pdgs(LEPTON_PDG_FOR_DECAY[decay])
            for mother_pdg in cfg.mother_pdgs:
                match = match_reconstructed_decay(
                    table, labels, mother_pdg, expected, cfg.accept_antiparticles, cfg.reco_max_depth
                )
                if match is None:
                    continue
                return MatchResult(
                    flag=decay,
                    origin=classify_origin(table, match.index, cfg.origin_max_depth),
                    channel=CHANNEL_FOR_PDG.get(mother_pdg, DecayChannel.NONE),
                )
        return MatchResult()

    def match_candidates(
        self,
        candidates: Sequence[Candidate],
        table: ParticleTable,
        track_labels: Mapping[str, int],
    ) -> list[MatchResult]:
        """One `MatchResult` per candidate, index-aligned."""
        return [self.match_candidate(c, table, track_labels) for c in candidates]

    def match_particle(self, table: ParticleTable, index: int) -> MatchResult:
        cfg = self.config
        for mother_pdg in cfg.mother_pdgs:
            sign = match_generated_decay(
                table,
                index,
                mother_pdg,
                (cfg.intermediate_pdg, cfg.partner_pdg),
                cfg.accept_antiparticles,
                cfg.gen_max_depth,
            )
            if sign is None:
                continue
            intermediate = next(
                (
                    d
                    for d in collect_daughters(table, index, 1, (cfg.intermediate_pdg,))
                    if abs(table[d].pdg_code) == cfg.intermediate_pdg
                ),
                None,
            )
            if intermediate is None:
                continue
            for decay in ChicDecay:
                lepton = LEPTON_PDG_FOR_DECAY[decay]
                if match_generated_decay(
                    table,
                    intermediate,
                    cfg.intermediate_pdg,
                    (lepton, -lepton),
                    cfg.accept_antiparticles,
                    cfg.gen_max_depth,
                ) is None:
                    continue
                return MatchResult(
                    flag=decay,
                    origin=classify_origin(table, index, cfg.origin_max_depth),
                    channel=CHANNEL_FOR_PDG.get(mother_pdg, DecayChannel.NONE),
                )
        return MatchResult()

    def match_generated(self, table: ParticleTable) -> list[MatchResult]:
        """One `MatchResult` per generated particle, index-aligned."""
        return [self.match_particle(table, i) for i in range(len(table))]

    def match_event(
        self, event: EventInput, candidates: Sequence[Candidate]
    ) -> tuple[list[MatchResult], list[MatchResult]]:
        """Reconstructed-side and generated-side labels of one event."""
        table = ParticleTable.from_particles(event.particles)
        reco = self.match_candidates(candidates, table, event.track_labels)
        gen = self.match_generated(table)
        logger.debug(
            "Event %s: %d/%d candidates matched, %d signal particles",
            event.event_id,
            sum(r.is_signal for r in reco),
            len(reco),
            sum(g.is_signal for g in gen),
        )
        return reco, gen
