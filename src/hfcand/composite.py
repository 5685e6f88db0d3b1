"""Helpers to treat a two-prong candidate as one track-like composite object.

This enables the staged workflow where an intermediate resonance candidate is
re-used as an input "track" for the next vertex fit.
"""

from __future__ import annotations

from typing import Sequence

from .fitter import FitFailure, fit_vertex
from .models import FitterConfig, IntermediateCandidate, IntermediateComposite, TrackState
from .physics import pack_sym


def rebuild_intermediate(
    intermediate: IntermediateCandidate,
    prongs: Sequence[TrackState],
    mass: float,
    config: FitterConfig,
) -> IntermediateComposite | FitFailure:
    """Refit the prongs of `intermediate` and build its pseudo-trajectory.

    The composite state uses:
    - `(x, y, z)` from the refit PCA of the two prongs.
    - `(px, py, pz)` from the sum of the prong momenta at that PCA.
    - position covariance from the refit PCA covariance.
    - momentum covariance from the summed prong momentum covariances.
    - `charge` from the summed prong charge.

    Notes:
    - The stored vertex and momentum of `intermediate` are not used, so the
      state is consistent with the covariance just computed.
    - Position/momentum correlations are not carried over.
    """
    fit = fit_vertex(prongs, config)
    if isinstance(fit, FitFailure):
        return fit
    at_pca = fit.tracks if config.propagate_to_pca else tuple(
        t.propagate_to_point(fit.vertex, config.bz) for t in prongs
    )

    px = sum(t.px for t in at_pca)
    py = sum(t.py for t in at_pca)
    pz = sum(t.pz for t in at_pca)

    full = [[0.0] * 6 for _ in range(6)]
    pos = fit.cov_matrix()
    for i in range(3):
        for j in range(3):
            full[i][j] = pos[i][j]
    for state in at_pca:
        mom = state.momentum_cov()
        for i in range(3):
            for j in range(3):
                full[i + 3][j + 3] += mom[i][j]

    source_ids: list[str] = []
    for t in prongs:
        source_ids.extend(t.underlying_ids())

    track = TrackState(
        track_id=intermediate.candidate_id,
        x=fit.vertex[0],
        y=fit.vertex[1],
        z=fit.vertex[2],
        px=px,
        py=py,
        pz=pz,
        cov=pack_sym(full),
        charge=sum(int(t.charge) for t in prongs),
        source_track_ids=tuple(dict.fromkeys(source_ids)),
    )
    return IntermediateComposite(
        intermediate_id=intermediate.candidate_id,
        track=track,
        prong_ids=intermediate.prong_ids,
        mass=mass,
        chi2=fit.chi2,
        pca_cov=fit.cov,
    )
