"""Public package exports for the heavy-flavour candidate framework."""

from .builder import CandidateBuilder
from .composite import rebuild_intermediate
from .fitter import FitFailure, FitFailureReason, FitResult, VertexFitter, fit_vertex
from .jets import HFJetTagger, TaggedJet
from .models import (
    Candidate,
    Collision,
    EventInput,
    FitterConfig,
    GeneratedParticle,
    ImpactParameter,
    IntermediateCandidate,
    IntermediateComposite,
    IntermediateSelection,
    JetConfig,
    MatchingConfig,
    MatchResult,
    PartnerSelection,
    RunConfig,
    TrackState,
)
from .monitoring import HistogramReporter, NullReporter, Reporter
from .physics import CovarianceConsistencyError
from .pid import (
    ChicDecay,
    DecayChannel,
    Origin,
    ParticleHypothesis,
    TwoProngDecay,
    make_chic1,
    make_chic2,
    make_electron,
    make_jpsi,
    make_muon,
    make_photon,
    make_pion,
    particle_hypothesis_from_name,
)
from .truth import ParticleTable, TruthMatcher

__all__ = [
    "CandidateBuilder",
    "TruthMatcher",
    "HFJetTagger",
    "VertexFitter",
    "fit_vertex",
    "FitResult",
    "FitFailure",
    "FitFailureReason",
    "rebuild_intermediate",
    "TrackState",
    "Collision",
    "ImpactParameter",
    "IntermediateCandidate",
    "IntermediateComposite",
    "GeneratedParticle",
    "ParticleTable",
    "EventInput",
    "Candidate",
    "MatchResult",
    "TaggedJet",
    "FitterConfig",
    "IntermediateSelection",
    "PartnerSelection",
    "MatchingConfig",
    "JetConfig",
    "RunConfig",
    "Reporter",
    "NullReporter",
    "HistogramReporter",
    "CovarianceConsistencyError",
    "ParticleHypothesis",
    "TwoProngDecay",
    "ChicDecay",
    "Origin",
    "DecayChannel",
    "make_electron",
    "make_muon",
    "make_pion",
    "make_photon",
    "make_jpsi",
    "make_chic1",
    "make_chic2",
    "particle_hypothesis_from_name",
]
