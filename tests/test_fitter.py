"""Unit tests for the iterative PCA vertex fitter."""

from __future__ import annotations

import math
import unittest

from hfcand import FitFailure, FitFailureReason, FitResult, FitterConfig, TrackState, VertexFitter, fit_vertex
from hfcand.physics import pack_sym


def _cov6(pos: float = 1e-6, mom: float = 0.0) -> tuple[float, ...]:
    """Diagonal packed 6x6 covariance with separate position/momentum scales."""
    diag = [pos, pos, pos, mom, mom, mom]
    return pack_sym([[diag[i] if i == j else 0.0 for j in range(6)] for i in range(6)])


def _track(track_id: str, pos, mom, charge: int = 0, cov=None) -> TrackState:
    return TrackState(
        track_id=track_id,
        x=pos[0],
        y=pos[1],
        z=pos[2],
        px=mom[0],
        py=mom[1],
        pz=mom[2],
        cov=_cov6() if cov is None else cov,
        charge=charge,
    )


class TestVertexFitter(unittest.TestCase):
    """Validate PCA accuracy, failure modes and immutability of inputs."""

    def assertVertexNear(self, result, expected, tol: float) -> None:
        self.assertIsInstance(result, FitResult)
        for got, want in zip(result.vertex, expected):
            self.assertAlmostEqual(got, want, delta=tol)

    def test_exactly_intersecting_straight_tracks(self) -> None:
        """Two straight tracks crossing at P should fit to P."""
        p = (0.3, -0.2, 1.5)
        t1 = _track("a", (p[0] - 1.0, p[1], p[2] - 0.5), (2.0, 0.0, 1.0))
        t2 = _track("b", (p[0], p[1] - 1.0, p[2] - 2.0), (0.0, 0.5, 1.0))
        result = fit_vertex([t1, t2], FitterConfig(bz=0.0))
        self.assertVertexNear(result, p, 1e-9)
        self.assertAlmostEqual(result.chi2, 0.0, places=12)

    def test_near_miss_tracks_fit_to_midpoint(self) -> None:
        """Skew tracks 10 um apart should fit to the midpoint of their PCA segment."""
        t1 = _track("a", (-1.0, 0.0005, 1.0), (1.0, 0.0, 0.0))
        t2 = _track("b", (0.0, -0.0005, 0.0), (0.0, 0.0, 1.0))
        for use_abs_dca in (True, False):
            with self.subTest(use_abs_dca=use_abs_dca):
                result = fit_vertex([t1, t2], FitterConfig(bz=0.0, use_abs_dca=use_abs_dca))
                self.assertVertexNear(result, (0.0, 0.0, 1.0), 1e-7)

    def test_curved_tracks_recover_crossing_point(self) -> None:
        """Charged tracks transported away from P along their helix should fit back to P."""
        p = (0.1, 0.2, 0.5)
        bz = 5.0
        a = _track("a", p, (0.8, 0.3, 0.4), charge=1).propagate(-5.0, bz)
        b = _track("b", p, (-0.2, 0.9, -0.3), charge=-1).propagate(-5.0, bz)
        result = fit_vertex([a, b], FitterConfig(bz=bz))
        self.assertVertexNear(result, p, 1e-4)
        self.assertGreaterEqual(result.iterations, 1)

    def test_propagated_momenta_at_vertex(self) -> None:
        """With propagate_to_pca the returned states carry the momenta at the vertex."""
        p = (0.0, 0.0, 0.0)
        mom = (0.8, 0.3, 0.4)
        a = _track("a", p, mom, charge=1).propagate(-3.0, 5.0)
        b = _track("b", p, (-0.2, 0.9, -0.3), charge=-1).propagate(-3.0, 5.0)
        result = fit_vertex([a, b], FitterConfig(bz=5.0))
        self.assertIsInstance(result, FitResult)
        for got, want in zip(result.momentum(0), mom):
            self.assertAlmostEqual(got, want, delta=1e-4)

    def test_parallel_tracks_fail(self) -> None:
        """Parallel, non-crossing tracks must not produce a vertex."""
        t1 = _track("a", (0.0, 0.0, 0.0), (0.6, 0.0, 0.8))
        t2 = _track("b", (0.0, 0.1, 0.0), (0.6, 0.0, 0.8))
        result = fit_vertex([t1, t2], FitterConfig(bz=0.0))
        self.assertIsInstance(result, FitFailure)
        self.assertEqual(result.reason, FitFailureReason.DEGENERATE)

    def test_vertex_beyond_max_radius_fails(self) -> None:
        """A PCA outside the configured transverse radius is rejected."""
        t1 = _track("a", (249.0, 0.0, 0.0), (1.0, 0.0, 0.0))
        t2 = _track("b", (250.0, -1.0, 0.0), (0.0, 1.0, 0.0))
        result = fit_vertex([t1, t2], FitterConfig(bz=0.0, max_r=200.0))
        self.assertIsInstance(result, FitFailure)
        self.assertEqual(result.reason, FitFailureReason.MAX_RADIUS)

        accepted = fit_vertex([t1, t2], FitterConfig(bz=0.0, max_r=300.0))
        self.assertVertexNear(accepted, (250.0, 0.0, 0.0), 1e-9)

    def test_initial_dz_separation_rejected(self) -> None:
        """Tracks whose closest points are far apart in z fail early."""
        t1 = _track("a", (0.0, 0.0, 0.0), (1.0, 0.0, 0.0))
        t2 = _track("b", (0.0, 0.0, 10.0), (0.0, 1.0, 0.0))
        result = fit_vertex([t1, t2], FitterConfig(bz=0.0, max_dz_ini=4.0))
        self.assertIsInstance(result, FitFailure)
        self.assertEqual(result.reason, FitFailureReason.MAX_DZ_INI)

    def test_iteration_cap_reports_non_convergence(self) -> None:
        """Running out of iterations before the stopping criteria is a failure."""
        p = (0.1, 0.2, 0.5)
        a = _track("a", p, (0.8, 0.3, 0.4), charge=1).propagate(-20.0, 5.0)
        b = _track("b", p, (-0.2, 0.9, -0.3), charge=-1).propagate(-20.0, 5.0)
        result = fit_vertex([a, b], FitterConfig(bz=5.0, max_iterations=1))
        self.assertIsInstance(result, FitFailure)
        self.assertEqual(result.reason, FitFailureReason.NOT_CONVERGED)

    def test_stalled_chi2_ends_the_fit(self) -> None:
        """With the parameter-change test disabled the fit stops once chi2 stops improving."""
        config = FitterConfig(bz=0.0, min_param_change=0.0, max_iterations=20)
        skew = (
            _track("a", (-1.0, 0.0005, 1.0), (1.0, 0.0, 0.0)),
            _track("b", (0.0, -0.0005, 0.0), (0.0, 0.0, 1.0)),
        )
        crossing = (
            _track("a", (-1.0, 0.0, 1.0), (1.0, 0.0, 0.0)),
            _track("b", (0.0, 0.0, 0.0), (0.0, 0.0, 1.0)),
        )
        for name, tracks in (("skew", skew), ("crossing", crossing)):
            with self.subTest(name=name):
                result = fit_vertex(tracks, config)
                self.assertVertexNear(result, (0.0, 0.0, 1.0), 1e-7)
                self.assertLess(result.iterations, config.max_iterations)
        # The seed is already the PCA, so the second pass sees no improvement.
        self.assertEqual(fit_vertex(skew, config).iterations, 2)

        # One pass cannot judge the chi2 improvement.
        capped = fit_vertex(skew, FitterConfig(bz=0.0, min_param_change=0.0, max_iterations=1))
        self.assertIsInstance(capped, FitFailure)
        self.assertEqual(capped.reason, FitFailureReason.NOT_CONVERGED)

    def test_vertex_covariance_from_track_errors(self) -> None:
        """Orthogonal tracks with equal errors give a diagonal, positive covariance."""
        t1 = _track("a", (-1.0, 0.0, 0.0), (1.0, 0.0, 0.0), cov=_cov6(1e-4))
        t2 = _track("b", (0.0, -1.0, 0.0), (0.0, 1.0, 0.0), cov=_cov6(1e-4))
        result = fit_vertex([t1, t2], FitterConfig(bz=0.0))
        self.assertIsInstance(result, FitResult)
        xx, xy, yy, xz, yz, zz = result.cov
        self.assertAlmostEqual(xx, 1e-4, delta=1e-10)
        self.assertAlmostEqual(yy, 1e-4, delta=1e-10)
        self.assertAlmostEqual(zz, 0.5e-4, delta=1e-10)
        self.assertAlmostEqual(xy, 0.0, delta=1e-12)
        self.assertAlmostEqual(xz, 0.0, delta=1e-12)
        self.assertAlmostEqual(yz, 0.0, delta=1e-12)

    def test_inputs_are_not_modified_and_fitter_is_stateless(self) -> None:
        """Repeated fits on the same inputs agree and leave the inputs untouched."""
        t1 = _track("a", (-1.0, 0.0005, 1.0), (1.0, 0.0, 0.0))
        t2 = _track("b", (0.0, -0.0005, 0.0), (0.0, 0.0, 1.0))
        before = (t1, t2)
        fitter = VertexFitter(FitterConfig(bz=0.0))
        first = fitter.fit([t1, t2])
        second = fitter.fit([t1, t2])
        self.assertEqual(first, second)
        self.assertEqual((t1, t2), before)
        self.assertEqual(t1.position, (-1.0, 0.0005, 1.0))

    def test_single_track_is_rejected(self) -> None:
        """Fitting fewer than two tracks is a usage error."""
        with self.assertRaises(ValueError):
            fit_vertex([_track("a", (0.0, 0.0, 0.0), (1.0, 0.0, 0.0))])

    def test_results_are_finite(self) -> None:
        """A converged fit never reports NaN or infinite quantities."""
        t1 = _track("a", (-1.0, 0.0, 0.0), (1.0, 0.0, 0.0))
        t2 = _track("b", (0.0, -1.0, 0.0), (0.0, 1.0, 0.0))
        result = fit_vertex([t1, t2], FitterConfig(bz=0.0))
        self.assertIsInstance(result, FitResult)
        values = (*result.vertex, *result.cov, result.chi2)
        self.assertTrue(all(math.isfinite(v) for v in values))


if __name__ == "__main__":
    unittest.main()
