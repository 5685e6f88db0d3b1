"""Heavy-flavour jet tagging around selected two-prong candidates.

For each selected candidate the event tracks (minus the candidate prongs) and
the candidate itself are clustered with anti-kt; the leading jet containing
the candidate is kept. Clustering is delegated to the `fastjet` bindings.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from .models import EventInput, IntermediateCandidate, JetConfig, TrackState
from .monitoring import NullReporter, Reporter
from .pid import make_pion

logger = logging.getLogger(__name__)

# Candidate user indices by selection status (particle, antiparticle, both).
STATUS_PARTICLE = 1
STATUS_ANTIPARTICLE = 2
STATUS_BOTH = 3


@dataclass(frozen=True)
class TaggedJet:
    """Jet containing a heavy-flavour candidate."""

    event_id: str
    collision_id: str
    candidate_id: str
    pt: float
    eta: float
    phi: float
    energy: float
    mass: float
    jet_r: float
    area: float
    constituent_ids: tuple[str, ...]
    candidate_status: int
    candidate_pt: float

    @property
    def n_constituents(self) -> int:
        return len(self.constituent_ids)


def _require_fastjet():
    """Import fastjet lazily and provide a clear installation hint on failure."""
    try:
        import fastjet  # type: ignore
    except ModuleNotFoundError as exc:
        raise ModuleNotFoundError(
            "fastjet is required for jet tagging. Install the fastjet Python bindings."
        ) from exc
    return fastjet


def candidate_status(
    candidate: IntermediateCandidate, min_selection_flag: int, min_selection_flag_bar: int
) -> int:
    """1 if only the particle hypothesis is selected, 2 if only the antiparticle, else 3."""
    sel = candidate.selection_flag >= min_selection_flag
    sel_bar = candidate.selection_flag_bar >= min_selection_flag_bar
    if sel and not sel_bar:
        return STATUS_PARTICLE
    if sel_bar and not sel:
        return STATUS_ANTIPARTICLE
    return STATUS_BOTH


@dataclass
class HFJetTagger:
    config: JetConfig = field(default_factory=JetConfig)
    reporter: Reporter = field(default_factory=NullReporter)

    def select_tracks(self, tracks: Sequence[TrackState]) -> list[TrackState]:
        cfg = self.config
        return [
            t for t in tracks if t.pt > cfg.track_min_pt and abs(t.eta) < cfg.track_max_abs_eta
        ]

    def select_candidates(
        self, intermediates: Sequence[IntermediateCandidate]
    ) -> list[IntermediateCandidate]:
        cfg = self.config
        return [
            c
            for c in intermediates
            if c.has_decay(cfg.candidate_decay)
            and (
                c.selection_flag >= cfg.min_selection_flag
                or c.selection_flag_bar >= cfg.min_selection_flag_bar
            )
        ]

    def tag_candidate(
        self,
        event: EventInput,
        candidate: IntermediateCandidate,
        tracks: Sequence[TrackState],
    ) -> TaggedJet | None:
        """Cluster `tracks` with `candidate` and return the leading jet holding it."""
        fastjet = _require_fastjet()
        cfg = self.config
        pion_mass = make_pion().mass
        prongs = set(candidate.prong_ids)

        inputs = []
        ids: list[str] = []
        for t in tracks:
            if t.track_id in prongs:
                continue
            pj = fastjet.PseudoJet(t.px, t.py, t.pz, t.energy(pion_mass))
            pj.set_user_index(len(ids))
            inputs.append(pj)
            ids.append(t.track_id)

        status = candidate_status(candidate, cfg.min_selection_flag, cfg.min_selection_flag_bar)
        px, py, pz = candidate.momentum
        energy = math.sqrt(px * px + py * py + pz * pz + cfg.candidate_mass**2)
        cand_pj = fastjet.PseudoJet(px, py, pz, energy)
        cand_pj.set_user_index(-status)
        inputs.append(cand_pj)

        jet_def = fastjet.JetDefinition(fastjet.antikt_algorithm, cfg.jet_r)
        # Active area from ghosts spread over the track acceptance.
        ghosts = fastjet.GhostedAreaSpec(cfg.track_max_abs_eta, 1, cfg.ghost_area)
        area_def = fastjet.AreaDefinition(fastjet.active_area, ghosts)
        sequence = fastjet.ClusterSequenceArea(inputs, jet_def, area_def)
        jets = sorted(sequence.inclusive_jets(cfg.jet_pt_min), key=lambda j: -j.pt())
        for jet in jets:
            constituents = jet.constituents()
            if not any(c.user_index() < 0 for c in constituents):
                continue
            constituent_ids = tuple(
                candidate.candidate_id if c.user_index() < 0 else ids[c.user_index()]
                for c in constituents
            )
            self.reporter.fill("jet_pt", jet.pt())
            self.reporter.fill("jet_n_constituents", len(constituent_ids))
            self.reporter.fill("candidate_pt", candidate.pt)
            return TaggedJet(
                event_id=event.event_id,
                collision_id=event.collision.collision_id,
                candidate_id=candidate.candidate_id,
                pt=jet.pt(),
                eta=jet.eta(),
                phi=jet.phi(),
                energy=jet.E(),
                mass=jet.m(),
                jet_r=cfg.jet_r,
                area=jet.area(),
                constituent_ids=constituent_ids,
                candidate_status=status,
                candidate_pt=candidate.pt,
            )
        self.reporter.count("jet_without_candidate")
        return None

    def tag(self, event: EventInput) -> list[TaggedJet]:
        """One tagged jet per selected candidate of the event (when found)."""
        tracks = self.select_tracks(event.tracks)
        out: list[TaggedJet] = []
        for candidate in self.select_candidates(event.intermediates):
            jet = self.tag_candidate(event, candidate, tracks)
            if jet is not None:
                out.append(jet)
        return out

    def tag_events(self, events: Sequence[EventInput]) -> list[TaggedJet]:
        out: list[TaggedJet] = []
        for event in events:
            out.extend(self.tag(event))
        logger.info("Tagged %d jets in %d events", len(out), len(events))
        return out
