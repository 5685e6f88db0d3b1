"""High-level candidate builder: intermediate composite + partner track.

The per-event pipeline is declarative:
1. select the eligible intermediates,
2. select the eligible partner tracks,
3. rebuild every eligible intermediate as a pseudo-trajectory,
4. fit the full cartesian product of composites and partners.

Every successful fit yields exactly one `Candidate`; there is no best-of
selection and no deduplication.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .composite import rebuild_intermediate
from .fitter import FitFailure, fit_vertex
from .models import (
    Candidate,
    Collision,
    EventInput,
    FitterConfig,
    IntermediateCandidate,
    IntermediateComposite,
    IntermediateSelection,
    PartnerSelection,
    TrackState,
)
from .monitoring import NullReporter, Reporter
from .physics import (
    CovarianceConsistencyError,
    cos_pointing_angle,
    decay_length_errors,
    invariant_mass,
)
from .pid import (
    CHIC_DECAY_FOR_INTERMEDIATE,
    LEPTON_FOR_INTERMEDIATE,
    ChicDecay,
    make_jpsi,
    make_photon,
)

logger = logging.getLogger(__name__)


@dataclass
class CandidateBuilder:
    """Build chi_c-like candidates from selected J/psi candidates and tracks.

    `partner_mass` is the mass assigned to the second constituent in the
    invariant-mass computation (zero for a photon-like partner).
    """

    fitter_config: FitterConfig = field(default_factory=FitterConfig)
    selection: IntermediateSelection = field(default_factory=IntermediateSelection)
    partner_selection: PartnerSelection = field(default_factory=PartnerSelection)
    intermediate_mass: float = make_jpsi().mass
    partner_mass: float = make_photon().mass
    reporter: Reporter = field(default_factory=NullReporter)

    def __post_init__(self) -> None:
        if self.selection.decay not in CHIC_DECAY_FOR_INTERMEDIATE:
            raise ValueError(
                f"Intermediate decay {self.selection.decay.name} has no chi_c hypothesis."
            )
        if self.partner_selection.charge_sign not in (-1, 0, 1):
            raise ValueError("Partner charge_sign must be -1, 0 or +1.")

    @property
    def hf_flag(self) -> ChicDecay:
        return CHIC_DECAY_FOR_INTERMEDIATE[self.selection.decay]

    def select_intermediates(
        self, intermediates: Sequence[IntermediateCandidate]
    ) -> list[IntermediateCandidate]:
        """Apply the hypothesis-bit, selection-flag and rapidity requirements."""
        sel = self.selection
        out: list[IntermediateCandidate] = []
        for cand in intermediates:
            if not cand.has_decay(sel.decay):
                continue
            if cand.selection_flag < sel.min_selection_flag:
                continue
            if sel.max_rapidity >= 0.0 and abs(cand.candidate_rapidity(self.intermediate_mass)) > sel.max_rapidity:
                continue
            out.append(cand)
        return out

    def select_partners(self, tracks: Sequence[TrackState]) -> list[TrackState]:
        """Apply the partner predicate (charge sign, energy and eta window)."""
        ps = self.partner_selection
        out: list[TrackState] = []
        for t in tracks:
            if ps.charge_sign != 0 and t.charge * ps.charge_sign <= 0:
                continue
            if ps.min_energy is not None and t.energy(self.partner_mass) < ps.min_energy:
                continue
            if ps.min_eta is not None and t.eta < ps.min_eta:
                continue
            if ps.max_eta is not None and t.eta > ps.max_eta:
                continue
            out.append(t)
        return out

    def rebuild_intermediate(
        self,
        intermediate: IntermediateCandidate,
        tracks_by_id: Mapping[str, TrackState],
        collision: Collision | None = None,
    ) -> IntermediateComposite | None:
        """Refit one intermediate from its prongs; `None` if that is impossible."""
        try:
            prongs = tuple(tracks_by_id[tid] for tid in intermediate.prong_ids)
        except KeyError as exc:
            logger.debug(
                "Intermediate %s references unknown track %s", intermediate.candidate_id, exc
            )
            self.reporter.count("intermediate_missing_prong")
            return None
        composite = rebuild_intermediate(
            intermediate, prongs, self.intermediate_mass, self.fitter_config
        )
        if isinstance(composite, FitFailure):
            self.reporter.count(f"intermediate_fit_{composite.reason.value}")
            return None

        lepton = LEPTON_FOR_INTERMEDIATE.get(self.selection.decay)
        if lepton is not None:
            self.reporter.fill(
                "mass_intermediate",
                invariant_mass((p.momentum for p in prongs), (lepton.mass, lepton.mass)),
            )
        self.reporter.fill("pt_intermediate", intermediate.pt)
        if collision is not None:
            self.reporter.fill(
                "cpa_intermediate",
                cos_pointing_angle(
                    collision.position, intermediate.secondary_vertex, intermediate.momentum
                ),
            )
        return composite

    def combine(
        self,
        collision: Collision,
        composite: IntermediateComposite,
        partner: TrackState,
        event_id: str | None = None,
    ) -> Candidate | None:
        """Fit one composite + partner pair and derive its observables."""
        bz = self.fitter_config.bz
        fit = fit_vertex((composite.track, partner), self.fitter_config)
        if isinstance(fit, FitFailure):
            self.reporter.count(f"fit_{fit.reason.value}")
            return None
        self.reporter.fill("cov_sv_xx", fit.cov[0])

        if self.fitter_config.propagate_to_pca:
            at_vertex = fit.tracks
        else:
            at_vertex = (
                composite.track.propagate_to_point(fit.vertex, bz),
                partner.propagate_to_point(fit.vertex, bz),
            )
        p_intermediate = at_vertex[0].momentum
        p_partner = at_vertex[1].momentum

        # Impact parameters are taken from the unpropagated input states.
        _, ip0 = composite.track.propagate_to_dca(collision, bz)
        _, ip1 = partner.propagate_to_dca(collision, bz)
        self.reporter.fill("cov_pv_xx", collision.cov[0])

        try:
            error_decay_length, error_decay_length_xy = decay_length_errors(
                collision.position, collision.cov, fit.vertex, fit.cov
            )
        except CovarianceConsistencyError as exc:
            logger.warning(
                "Dropping %s + %s in event %s: %s",
                composite.intermediate_id,
                partner.track_id,
                event_id,
                exc,
            )
            self.reporter.count("covariance_inconsistent")
            return None

        mass = invariant_mass(
            (p_intermediate, p_partner), (composite.mass, self.partner_mass)
        )
        self.reporter.fill("mass_candidate", mass)

        return Candidate(
            event_id=event_id,
            collision_id=collision.collision_id,
            pv_xyz=collision.position,
            sv_xyz=fit.vertex,
            sv_cov=fit.cov,
            error_decay_length=error_decay_length,
            error_decay_length_xy=error_decay_length_xy,
            chi2_pca=fit.chi2,
            p_intermediate=p_intermediate,
            p_partner=p_partner,
            impact_parameter0=ip0.rphi,
            impact_parameter1=ip1.rphi,
            error_impact_parameter0=ip0.sigma_rphi,
            error_impact_parameter1=ip1.sigma_rphi,
            intermediate_id=composite.intermediate_id,
            partner_track_id=partner.track_id,
            intermediate_prong_ids=composite.prong_ids,
            hf_flag=self.hf_flag,
            mass=mass,
        )

    def build(self, event: EventInput) -> list[Candidate]:
        """Build all candidates of one event.

        Workflow:
        1. Select intermediates and partner tracks.
        2. Rebuild each selected intermediate from its prongs.
        3. Fit every composite with every partner that shares no track with it.
        4. Return one `Candidate` per successful fit.
        """
        tracks_by_id = {t.track_id: t for t in event.tracks}
        intermediates = self.select_intermediates(event.intermediates)
        partners = self.select_partners(event.tracks)
        composites = [
            c
            for c in (
                self.rebuild_intermediate(i, tracks_by_id, event.collision) for i in intermediates
            )
            if c is not None
        ]

        results: list[Candidate] = []
        for composite in composites:
            used = set(composite.prong_ids) | set(composite.track.underlying_ids())
            for partner in partners:
                if used.intersection(partner.underlying_ids()):
                    self.reporter.count("shared_track")
                    continue
                candidate = self.combine(event.collision, composite, partner, event.event_id)
                if candidate is not None:
                    results.append(candidate)
        logger.debug(
            "Event %s: %d intermediates, %d partners, %d candidates",
            event.event_id,
            len(composites),
            len(partners),
            len(results),
        )
        return results

    def build_events(self, events: Sequence[EventInput]) -> list[Candidate]:
        """Run `build` on a list of events and aggregate tagged candidates."""
        out: list[Candidate] = []
        for event in events:
            out.extend(self.build(event))
        logger.info("Built %d candidates from %d events", len(out), len(events))
        return out
