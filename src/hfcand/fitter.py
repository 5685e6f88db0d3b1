"""Iterative point-of-closest-approach vertex fitter for N trajectories.

The fitter is a pure function of `(tracks, config)`: every call works on its
own transient state and never mutates the input `TrackState` objects.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from .models import FitterConfig, TrackState
from .physics import (
    PackedCov3,
    Vector3,
    dot3,
    invert_3x3,
    lines_pca,
    mat_vec3,
    pack_sym,
    residual_weight,
    sub3,
    transverse_projector,
)

logger = logging.getLogger(__name__)


class FitFailureReason(Enum):
    """Why a fit did not produce a vertex."""

    DEGENERATE = "degenerate"
    MAX_DZ_INI = "max_dz_ini"
    NOT_CONVERGED = "not_converged"
    MAX_RADIUS = "max_radius"


@dataclass(frozen=True)
class FitFailure:
    """Unsuccessful fit outcome; returned, never raised."""

    reason: FitFailureReason
    message: str = ""


@dataclass(frozen=True)
class FitResult:
    """Converged PCA of a set of trajectories."""

    vertex: Vector3
    cov: PackedCov3
    chi2: float
    iterations: int
    tracks: tuple[TrackState, ...]

    def momentum(self, index: int) -> Vector3:
        """Momentum of input `index` at the PCA (when propagated)."""
        return self.tracks[index].momentum

    def cov_matrix(self) -> list[list[float]]:
        c = self.cov
        return [[c[0], c[1], c[3]], [c[1], c[2], c[4]], [c[3], c[4], c[5]]]


def fit_vertex(
    tracks: Sequence[TrackState], config: FitterConfig | None = None
) -> FitResult | FitFailure:
    """Find the common point of closest approach of `tracks`.

    Workflow:
    1. Seed from the tangent lines at the track reference points.
    2. Reject seeds whose track z-separation exceeds `max_dz_ini`.
    3. Iterate: find each helix' closest point to the current estimate,
       linearize there and solve the weighted least-squares problem.
    4. Stop on small parameter change or small relative chi2 improvement;
       running out of iterations is a failure.
    5. Reject vertices beyond `max_r` in the transverse plane.
    """
    config = config or FitterConfig()
    tracks = tuple(tracks)
    if len(tracks) < 2:
        raise ValueError("A vertex fit needs at least two tracks.")
    bz = config.bz

    seed = lines_pca([t.position for t in tracks], [t.direction() for t in tracks])
    if seed is None:
        return _failure(FitFailureReason.DEGENERATE, "tracks are parallel at their reference points")
    vertex = seed[0]

    if config.max_dz_ini > 0.0:
        zs = [t.point_at(t.closest_approach_length(vertex, bz), bz)[2] for t in tracks]
        dz = max(zs) - min(zs)
        if dz > config.max_dz_ini:
            return _failure(
                FitFailureReason.MAX_DZ_INI,
                f"initial dz {dz:.4g} above {config.max_dz_ini:.4g}",
            )

    chi2_prev = math.inf
    converged = False
    iteration = 0
    for iteration in range(1, config.max_iterations + 1):
        points: list[Vector3] = []
        directions: list[Vector3] = []
        weights: list[list[list[float]]] = []
        for track in tracks:
            length = track.closest_approach_length(vertex, bz)
            points.append(track.point_at(length, bz))
            direction = track.direction_at(length, bz)
            directions.append(direction)
            if not config.use_abs_dca:
                weight = _track_weight(track.propagate(length, bz), direction)
                weights.append(weight if weight is not None else transverse_projector(direction))
        solved = lines_pca(points, directions, None if config.use_abs_dca else weights)
        if solved is None:
            return _failure(FitFailureReason.DEGENERATE, "singular normal equations")
        new_vertex, chi2, _ = solved
        if not all(math.isfinite(v) for v in new_vertex):
            return _failure(FitFailureReason.NOT_CONVERGED, "non-finite vertex estimate")
        change = max(abs(a - b) for a, b in zip(new_vertex, vertex))
        vertex = new_vertex
        if change < config.min_param_change:
            converged = True
            break
        if math.isfinite(chi2_prev) and chi2 >= config.min_rel_chi2_change * chi2_prev:
            converged = True
            break
        chi2_prev = chi2

    if not converged:
        return _failure(
            FitFailureReason.NOT_CONVERGED,
            f"no convergence after {config.max_iterations} iterations",
        )
    radius = math.hypot(vertex[0], vertex[1])
    if radius > config.max_r:
        return _failure(
            FitFailureReason.MAX_RADIUS, f"PCA radius {radius:.4g} above {config.max_r:.4g}"
        )

    at_pca = tuple(track.propagate_to_point(vertex, bz) for track in tracks)
    chi2 = 0.0
    weight_sum = [[0.0, 0.0, 0.0], [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]]
    cov_available = True
    for state in at_pca:
        direction = state.direction()
        residual = sub3(state.position, vertex)
        weight = _track_weight(state, direction)
        if weight is None:
            cov_available = False
            weight = transverse_projector(direction)
        if config.use_abs_dca:
            chi2 += dot3(residual, residual)
        else:
            chi2 += dot3(residual, mat_vec3(weight, residual))
        for i in range(3):
            for j in range(3):
                weight_sum[i][j] += weight[i][j]

    cov = _pca_cov(weight_sum) if cov_available else None
    if cov is None:
        # No usable track errors: report a null covariance.
        cov = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)
    return FitResult(
        vertex=vertex,
        cov=cov,
        chi2=chi2,
        iterations=iteration,
        tracks=at_pca if config.propagate_to_pca else tracks,
    )


@dataclass(frozen=True)
class VertexFitter:
    """Configured entry point around `fit_vertex`; holds no state between calls."""

    config: FitterConfig = field(default_factory=FitterConfig)

    def fit(self, tracks: Sequence[TrackState]) -> FitResult | FitFailure:
        return fit_vertex(tracks, self.config)


def _track_weight(state: TrackState, direction: Vector3) -> list[list[float]] | None:
    """Residual weight of one track from its position covariance at the PCA."""
    return residual_weight(direction, state.position_cov())


def _pca_cov(weight_sum: list[list[float]]) -> PackedCov3 | None:
    inv = invert_3x3(weight_sum)
    if inv is None:
        return None
    packed = pack_sym(inv)
    return (packed[0], packed[1], packed[2], packed[3], packed[4], packed[5])


def _failure(reason: FitFailureReason, message: str) -> FitFailure:
    logger.debug("Vertex fit failed (%s): %s", reason.value, message)
    return FitFailure(reason=reason, message=message)
