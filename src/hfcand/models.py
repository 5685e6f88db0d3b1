"""Core data models used by the candidate-reconstruction framework.

This module defines:
- immutable trajectory and vertex objects (`TrackState`, `Collision`)
- pre-selected two-prong inputs and their rebuilt form
  (`IntermediateCandidate`, `IntermediateComposite`)
- per-event containers (`EventInput`)
- outputs (`Candidate`, `MatchResult`)
- simulation truth records (`GeneratedParticle`)
- configuration bundles (`FitterConfig`, `IntermediateSelection`,
  `PartnerSelection`, `MatchingConfig`, `JetConfig`, `RunConfig`).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace

from .physics import (
    PackedCov3,
    Vector3,
    cos_pointing_angle,
    curvature_rate,
    dot3,
    helix_direction,
    helix_point,
    norm3,
    pack_sym,
    pseudorapidity,
    rapidity,
    similarity,
    sym_index,
    unpack_sym,
)
from .pid import ChicDecay, DecayChannel, Origin, TwoProngDecay, make_d0, make_photon

_MAX_NEWTON_STEPS = 25


@dataclass(frozen=True)
class ImpactParameter:
    """Distance of closest approach of a track to a reference vertex."""

    rphi: float
    sigma_rphi2: float

    @property
    def sigma_rphi(self) -> float:
        return math.sqrt(max(self.sigma_rphi2, 0.0))


@dataclass(frozen=True)
class TrackState:
    """Single reconstructed trajectory at a reference point.

    The state is `(x, y, z, px, py, pz)` with a packed 21-element covariance
    over the same six parameters. Propagation follows a helix in a uniform
    field along z and always returns a new object.
    """

    track_id: str
    x: float
    y: float
    z: float
    px: float
    py: float
    pz: float
    cov: tuple[float, ...]
    charge: int = 0
    source_track_ids: tuple[str, ...] = ()

    @property
    def position(self) -> Vector3:
        return (self.x, self.y, self.z)

    @property
    def momentum(self) -> Vector3:
        return (self.px, self.py, self.pz)

    @property
    def p(self) -> float:
        return norm3(self.momentum)

    @property
    def pt(self) -> float:
        return math.hypot(self.px, self.py)

    @property
    def phi(self) -> float:
        return math.atan2(self.py, self.px)

    @property
    def eta(self) -> float:
        return pseudorapidity(self.momentum)

    def direction(self) -> Vector3:
        """Unit momentum direction (zero vector for a zero-momentum state)."""
        p = self.p
        if p <= 0.0:
            return (0.0, 0.0, 0.0)
        return (self.px / p, self.py / p, self.pz / p)

    def energy(self, mass: float) -> float:
        return math.sqrt(self.p * self.p + mass * mass)

    def rapidity(self, mass: float) -> float:
        return rapidity(self.momentum, mass)

    def underlying_ids(self) -> tuple[str, ...]:
        """Ids of the measured trajectories this state is built from."""
        return self.source_track_ids or (self.track_id,)

    def position_cov(self) -> list[list[float]]:
        """3x3 position block of the covariance."""
        return [[self.cov[sym_index(i, j)] for j in range(3)] for i in range(3)]

    def momentum_cov(self) -> list[list[float]]:
        """3x3 momentum block of the covariance."""
        return [[self.cov[sym_index(i + 3, j + 3)] for j in range(3)] for i in range(3)]

    def omega(self, bz: float) -> float:
        return curvature_rate(self.charge, self.p, bz)

    def point_at(self, length: float, bz: float) -> Vector3:
        return helix_point(self.position, self.direction(), self.omega(bz), length)

    def direction_at(self, length: float, bz: float) -> Vector3:
        return helix_direction(self.direction(), self.omega(bz), length)

    def propagate(self, length: float, bz: float) -> "TrackState":
        """Transport the state along `length` cm of path.

        The covariance is transported with the straight-line Jacobian for
        the position and the field rotation for the momentum.
        """
        u = self.direction()
        omega = self.omega(bz)
        p = self.p
        x, y, z = helix_point(self.position, u, omega, length)
        tx, ty, tz = helix_direction(u, omega, length)
        phase = omega * length
        cp = math.cos(phase)
        sp = math.sin(phase)

        jac = [[0.0] * 6 for _ in range(6)]
        for i in range(3):
            jac[i][i] = 1.0
        if p > 0.0:
            scale = length / p
            for i in range(3):
                for j in range(3):
                    jac[i][j + 3] = scale * ((1.0 if i == j else 0.0) - u[i] * u[j])
        jac[3][3], jac[3][4] = cp, -sp
        jac[4][3], jac[4][4] = sp, cp
        jac[5][5] = 1.0
        cov = pack_sym(similarity(jac, unpack_sym(self.cov, 6)))

        return replace(
            self,
            x=x,
            y=y,
            z=z,
            px=p * tx,
            py=p * ty,
            pz=p * tz,
            cov=cov,
        )

    def closest_approach_length(
        self, point: Vector3, bz: float, transverse: bool = False
    ) -> float:
        """Path length at which the trajectory is closest to `point`.

        With `transverse=True` only the distance in the xy plane is
        minimized; a state without transverse momentum falls back to 3D.
        """
        u = self.direction()
        if u == (0.0, 0.0, 0.0):
            return 0.0
        omega = self.omega(bz)
        ut2 = u[0] * u[0] + u[1] * u[1]
        if transverse and ut2 < 1e-12:
            transverse = False
        d0 = (point[0] - self.x, point[1] - self.y, point[2] - self.z)
        if transverse:
            length = (d0[0] * u[0] + d0[1] * u[1]) / ut2
        else:
            length = dot3(d0, u)

        for _ in range(_MAX_NEWTON_STEPS):
            r = helix_point(self.position, u, omega, length)
            t = helix_direction(u, omega, length)
            d = (r[0] - point[0], r[1] - point[1], r[2] - point[2])
            dt = (-omega * t[1], omega * t[0])
            if transverse:
                f = d[0] * t[0] + d[1] * t[1]
                fp = t[0] * t[0] + t[1] * t[1] + d[0] * dt[0] + d[1] * dt[1]
            else:
                f = dot3(d, t)
                fp = 1.0 + d[0] * dt[0] + d[1] * dt[1]
            if fp <= 1e-9:
                # Past the turning point of the helix: keep the last estimate.
                break
            step = f / fp
            length -= step
            if abs(step) < 1e-10 * (1.0 + abs(length)):
                break
        return length

    def propagate_to_point(self, point: Vector3, bz: float) -> "TrackState":
        return self.propagate(self.closest_approach_length(point, bz), bz)

    def propagate_to_dca(
        self, collision: "Collision", bz: float
    ) -> tuple["TrackState", ImpactParameter]:
        """Move to the transverse DCA to a vertex and return the impact parameter.

        The transverse impact parameter is signed in the local track frame
        and its variance includes the vertex covariance.
        """
        length = self.closest_approach_length(collision.position, bz, transverse=True)
        state = self.propagate(length, bz)
        dx = state.x - collision.x
        dy = state.y - collision.y
        pt = state.pt
        if pt > 1e-12:
            nx, ny = -state.py / pt, state.px / pt
            d_rphi = nx * dx + ny * dy
        else:
            r = math.hypot(dx, dy)
            nx, ny = (dx / r, dy / r) if r > 0.0 else (1.0, 0.0)
            d_rphi = r
        c = state.cov
        v = collision.cov
        var_rphi = (
            nx * nx * (c[0] + v[0])
            + 2.0 * nx * ny * (c[1] + v[1])
            + ny * ny * (c[2] + v[2])
        )
        return state, ImpactParameter(
            rphi=d_rphi,
            sigma_rphi2=max(var_rphi, 0.0),
        )


@dataclass(frozen=True)
class Collision:
    """Primary interaction point of one event."""

    collision_id: str
    x: float
    y: float
    z: float
    cov: PackedCov3

    @property
    def position(self) -> Vector3:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class IntermediateCandidate:
    """Pre-selected two-prong candidate (e.g. J/psi -> e+ e-) from an earlier stage."""

    candidate_id: str
    x: float
    y: float
    z: float
    px: float
    py: float
    pz: float
    prong_ids: tuple[str, str]
    hf_flag: int = 0
    selection_flag: int = 0
    selection_flag_bar: int = 0
    rapidity: float | None = None

    @property
    def secondary_vertex(self) -> Vector3:
        return (self.x, self.y, self.z)

    @property
    def momentum(self) -> Vector3:
        return (self.px, self.py, self.pz)

    @property
    def pt(self) -> float:
        return math.hypot(self.px, self.py)

    def has_decay(self, decay: TwoProngDecay) -> bool:
        return bool(self.hf_flag & (1 << int(decay)))

    def candidate_rapidity(self, mass: float) -> float:
        """Stored rapidity if available, else computed with `mass`."""
        if self.rapidity is not None:
            return self.rapidity
        return rapidity(self.momentum, mass)


@dataclass(frozen=True)
class IntermediateComposite:
    """Intermediate candidate rebuilt as one pseudo-trajectory at its refit vertex."""

    intermediate_id: str
    track: TrackState
    prong_ids: tuple[str, str]
    mass: float
    chi2: float
    pca_cov: PackedCov3


@dataclass(frozen=True)
class GeneratedParticle:
    """One simulated particle with index links into its event's particle table."""

    index: int
    pdg_code: int
    mother_indices: tuple[int, ...] = ()
    daughter_indices: tuple[int, ...] = ()
    vx: float = 0.0
    vy: float = 0.0
    vz: float = 0.0
    px: float = 0.0
    py: float = 0.0
    pz: float = 0.0


@dataclass(frozen=True)
class EventInput:
    """One event payload: collision, tracks, selected intermediates, optional truth."""

    event_id: str
    collision: Collision
    tracks: tuple[TrackState, ...]
    intermediates: tuple[IntermediateCandidate, ...] = ()
    particles: tuple[GeneratedParticle, ...] = ()
    track_labels: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Candidate:
    """One accepted intermediate + partner combination with its fitted vertex."""

    event_id: str | None
    collision_id: str
    pv_xyz: Vector3
    sv_xyz: Vector3
    sv_cov: PackedCov3
    error_decay_length: float
    error_decay_length_xy: float
    chi2_pca: float
    p_intermediate: Vector3
    p_partner: Vector3
    impact_parameter0: float
    impact_parameter1: float
    error_impact_parameter0: float
    error_impact_parameter1: float
    intermediate_id: str
    partner_track_id: str
    intermediate_prong_ids: tuple[str, str]
    hf_flag: ChicDecay
    mass: float

    @property
    def momentum(self) -> Vector3:
        a = self.p_intermediate
        b = self.p_partner
        return (a[0] + b[0], a[1] + b[1], a[2] + b[2])

    @property
    def p(self) -> float:
        return norm3(self.momentum)

    @property
    def pt(self) -> float:
        px, py, _ = self.momentum
        return math.hypot(px, py)

    @property
    def eta(self) -> float:
        return pseudorapidity(self.momentum)

    @property
    def decay_length(self) -> float:
        return norm3(tuple(s - v for s, v in zip(self.sv_xyz, self.pv_xyz)))

    @property
    def decay_length_xy(self) -> float:
        return math.hypot(self.sv_xyz[0] - self.pv_xyz[0], self.sv_xyz[1] - self.pv_xyz[1])

    @property
    def cpa(self) -> float:
        return cos_pointing_angle(self.pv_xyz, self.sv_xyz, self.momentum)

    @property
    def cpa_xy(self) -> float:
        return cos_pointing_angle(self.pv_xyz, self.sv_xyz, self.momentum, transverse=True)

    @property
    def impact_parameter_product(self) -> float:
        return self.impact_parameter0 * self.impact_parameter1

    def track_ids(self) -> tuple[str, ...]:
        """Partner first, then the intermediate prongs."""
        return (self.partner_track_id, *self.intermediate_prong_ids)


@dataclass(frozen=True)
class MatchResult:
    """Truth label of one reconstructed candidate or generated particle."""

    flag: ChicDecay = ChicDecay(0)
    origin: Origin = Origin.NONE
    channel: DecayChannel = DecayChannel.NONE

    @property
    def is_signal(self) -> bool:
        return self.flag != 0


@dataclass(frozen=True)
class FitterConfig:
    """Numerical settings of the iterative vertex fitter."""

    bz: float = 5.0
    propagate_to_pca: bool = True
    max_r: float = 200.0
    max_dz_ini: float = 4.0
    min_param_change: float = 1e-3
    min_rel_chi2_change: float = 0.9
    use_abs_dca: bool = True
    max_iterations: int = 20


@dataclass(frozen=True)
class IntermediateSelection:
    """Which pre-selected intermediates enter the combinatorics."""

    decay: TwoProngDecay = TwoProngDecay.JPSI_TO_EE
    min_selection_flag: int = 1
    max_rapidity: float = -1.0


@dataclass(frozen=True)
class PartnerSelection:
    """Predicate for the second constituent.

    `charge_sign` of 0 accepts any charge; unset bounds are not applied. The
    energy uses the partner mass configured on the builder.
    """

    charge_sign: int = 1
    min_energy: float | None = None
    min_eta: float | None = None
    max_eta: float | None = None


@dataclass(frozen=True)
class MatchingConfig:
    """Expected decay signature and depth bounds for truth matching.

    `partner_pdg` is the charged stand-in for the photon, consistent with the
    default partner predicate.
    """

    mother_pdgs: tuple[int, ...] = (20443, 445)
    intermediate_pdg: int = 443
    partner_pdg: int = 211
    accept_antiparticles: bool = True
    reco_max_depth: int = 2
    gen_max_depth: int = 1
    origin_max_depth: int = 10


@dataclass(frozen=True)
class JetConfig:
    """Settings of the heavy-flavour jet tagging."""

    jet_r: float = 0.4
    jet_pt_min: float = 0.0
    track_min_pt: float = 0.15
    track_max_abs_eta: float = 0.9
    candidate_decay: TwoProngDecay = TwoProngDecay.D0_TO_PI_K
    candidate_mass: float = make_d0().mass
    min_selection_flag: int = 1
    min_selection_flag_bar: int = 1
    ghost_area: float = 0.005


@dataclass(frozen=True)
class RunConfig:
    """Everything one processing run needs, as loaded from a config document."""

    fitter: FitterConfig = field(default_factory=FitterConfig)
    intermediate_selection: IntermediateSelection = field(default_factory=IntermediateSelection)
    partner_selection: PartnerSelection = field(default_factory=PartnerSelection)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    jets: JetConfig = field(default_factory=JetConfig)
    partner_mass: float = make_photon().mass
    do_mc: bool = False
