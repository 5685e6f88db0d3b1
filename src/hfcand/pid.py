"""Particle constants and decay-hypothesis flags used by the candidate workflow.

This module exposes named particle builders (PDG code + mass) in the same
spirit as mass-hypothesis helpers, together with the tagged enumerations used
for candidate flags and truth-matching labels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag


@dataclass(frozen=True)
class ParticleHypothesis:
    """Named particle species with PDG code and mass (GeV)."""

    name: str
    mass: float
    pdg_id: int | None = None


_ELECTRON = ParticleHypothesis(name="e", mass=0.00051099895, pdg_id=11)
_MUON = ParticleHypothesis(name="mu", mass=0.1056583755, pdg_id=13)
_PION = ParticleHypothesis(name="pi", mass=0.13957039, pdg_id=211)
_KAON = ParticleHypothesis(name="K", mass=0.493677, pdg_id=321)
_PHOTON = ParticleHypothesis(name="gamma", mass=0.0, pdg_id=22)
_D0 = ParticleHypothesis(name="D0", mass=1.86484, pdg_id=421)
_JPSI = ParticleHypothesis(name="J/psi", mass=3.0969, pdg_id=443)
_CHIC1 = ParticleHypothesis(name="chi_c1", mass=3.51067, pdg_id=20443)
_CHIC2 = ParticleHypothesis(name="chi_c2", mass=3.55617, pdg_id=445)

_NAME_TO_HYPOTHESIS: dict[str, ParticleHypothesis] = {
    "e": _ELECTRON,
    "electron": _ELECTRON,
    "mu": _MUON,
    "muon": _MUON,
    "pi": _PION,
    "pion": _PION,
    "k": _KAON,
    "kaon": _KAON,
    "gamma": _PHOTON,
    "photon": _PHOTON,
    "d0": _D0,
    "jpsi": _JPSI,
    "j/psi": _JPSI,
    "chic1": _CHIC1,
    "chi_c1": _CHIC1,
    "chic2": _CHIC2,
    "chi_c2": _CHIC2,
}

PDG_BOTTOM_QUARK = 5


class TwoProngDecay(IntEnum):
    """Bit positions of the two-prong decay hypotheses in `hf_flag`."""

    D0_TO_PI_K = 0
    JPSI_TO_EE = 1
    JPSI_TO_MUMU = 2


class ChicDecay(IntFlag):
    """Decay hypotheses of a reconstructed chi_c candidate."""

    JPSI_TO_EE_GAMMA = 1 << 0
    JPSI_TO_MUMU_GAMMA = 1 << 1


class Origin(IntEnum):
    """Production origin of a truth-matched candidate."""

    NONE = 0
    PROMPT = 1
    NON_PROMPT = 2


class DecayChannel(IntEnum):
    """Charmonium state a truth match resolved to."""

    NONE = 0
    CHIC1 = 1
    CHIC2 = 2


# J/psi two-prong hypothesis -> chi_c hypothesis built on top of it.
CHIC_DECAY_FOR_INTERMEDIATE: dict[TwoProngDecay, ChicDecay] = {
    TwoProngDecay.JPSI_TO_EE: ChicDecay.JPSI_TO_EE_GAMMA,
    TwoProngDecay.JPSI_TO_MUMU: ChicDecay.JPSI_TO_MUMU_GAMMA,
}

# Lepton species of the J/psi daughters for each chi_c hypothesis.
LEPTON_PDG_FOR_DECAY: dict[ChicDecay, int] = {
    ChicDecay.JPSI_TO_EE_GAMMA: 11,
    ChicDecay.JPSI_TO_MUMU_GAMMA: 13,
}

CHANNEL_FOR_PDG: dict[int, DecayChannel] = {
    20443: DecayChannel.CHIC1,
    445: DecayChannel.CHIC2,
}


def make_electron() -> ParticleHypothesis:
    """Return the electron hypothesis."""
    return _ELECTRON


def make_muon() -> ParticleHypothesis:
    """Return the muon hypothesis."""
    return _MUON


def make_pion() -> ParticleHypothesis:
    """Return the standard charged-pion hypothesis."""
    return _PION


def make_photon() -> ParticleHypothesis:
    return _PHOTON


def make_d0() -> ParticleHypothesis:
    return _D0


def make_jpsi() -> ParticleHypothesis:
    """Return the J/psi hypothesis (mass used for the rebuilt intermediate)."""
    return _JPSI


def make_chic1() -> ParticleHypothesis:
    return _CHIC1


def make_chic2() -> ParticleHypothesis:
    return _CHIC2


# Lepton hypothesis of the prongs of each J/psi two-prong decay.
LEPTON_FOR_INTERMEDIATE: dict[TwoProngDecay, ParticleHypothesis] = {
    TwoProngDecay.JPSI_TO_EE: make_electron(),
    TwoProngDecay.JPSI_TO_MUMU: make_muon(),
}


def particle_hypothesis_from_name(name: str) -> ParticleHypothesis:
    """Resolve a short particle name (e.g. `pi`, `jpsi`) into a hypothesis."""
    key = name.strip().lower()
    try:
        return _NAME_TO_HYPOTHESIS[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_HYPOTHESIS))
        raise ValueError(
            f"Unknown particle hypothesis name '{name}'. Supported names: {supported}"
        ) from exc


def is_beauty(pdg_code: int) -> bool:
    """True for a b quark or any hadron with a b valence quark."""
    code = abs(pdg_code)
    if code == PDG_BOTTOM_QUARK:
        return True
    if code < 100:
        return False
    # Mesons nq1q2J: heaviest quark at the hundreds digit; baryons nq1q2q3J
    # carry it at the thousands digit.
    if (code // 1000) % 10 == PDG_BOTTOM_QUARK:
        return True
    return (code // 1000) % 10 == 0 and (code // 100) % 10 == PDG_BOTTOM_QUARK
