"""Unit tests for JSON input loaders and table writers."""

from __future__ import annotations

import importlib.util
import json
import tempfile
import unittest
from pathlib import Path

from hfcand import ChicDecay, MatchResult, Origin, TwoProngDecay, make_pion
from hfcand.io import (
    CANDIDATE_COLUMNS,
    JET_COLUMNS,
    MATCH_COLUMNS,
    load_config_json,
    load_events_json,
    write_candidates_table,
    write_jets_table,
    write_match_table,
)

HAS_PANDAS = importlib.util.find_spec("pandas") is not None


def _track(track_id: str, **overrides):
    item = {
        "track_id": track_id,
        "x": 0.0,
        "y": 0.0,
        "z": 0.0,
        "px": 0.5,
        "py": 0.1,
        "pz": 1.0,
        "cov": [1e-6, 0.0, 1e-6, 0.0, 0.0, 1e-6] + [0.0] * 9 + [1e-8] * 6,
        "charge": 1,
    }
    item.update(overrides)
    return item


def _event_payload() -> dict:
    return {
        "events": [
            {
                "event_id": "evt42",
                "collision": {
                    "collision_id": "col7",
                    "x": 0.01,
                    "y": -0.02,
                    "z": 1.5,
                    "cov": [[1e-6, 0.0, 0.0], [0.0, 2e-6, 0.0], [0.0, 0.0, 3e-6]],
                },
                "tracks": [_track("e0", charge=-1), _track("e1"), _track("pi0", source_track_ids=["raw3"])],
                "intermediates": [
                    {
                        "candidate_id": "jpsi0",
                        "x": 0.0,
                        "y": 0.0,
                        "z": 1.0,
                        "px": 1.0,
                        "py": 0.2,
                        "pz": 2.0,
                        "prong_ids": ["e0", "e1"],
                        "hf_flag": 2,
                        "selection_flag": 1,
                        "rapidity": 0.3,
                    }
                ],
                "particles": [
                    {"pdg_code": 20443, "daughter_indices": [1, 2]},
                    {"pdg_code": 443, "mother_indices": [0]},
                    {"pdg_code": 211, "mother_indices": [0]},
                ],
                "track_labels": {"pi0": 2},
            }
        ]
    }


def _write(tmpdir: str, name: str, payload) -> Path:
    path = Path(tmpdir) / name
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class TestEventLoader(unittest.TestCase):
    """Validate parsing of multi-event input documents."""

    def test_load_events_json_parses_event_payload(self) -> None:
        """Collision, tracks, intermediates and simulation content are all parsed."""
        with tempfile.TemporaryDirectory() as tmpdir:
            [event] = load_events_json(_write(tmpdir, "events.json", _event_payload()))

        self.assertEqual(event.event_id, "evt42")
        self.assertEqual(event.collision.collision_id, "col7")
        self.assertEqual(event.collision.position, (0.01, -0.02, 1.5))
        # Nested covariances are packed lower-triangular.
        self.assertEqual(event.collision.cov, (1e-6, 0.0, 2e-6, 0.0, 0.0, 3e-6))

        self.assertEqual([t.track_id for t in event.tracks], ["e0", "e1", "pi0"])
        self.assertEqual(event.tracks[0].charge, -1)
        self.assertEqual(len(event.tracks[0].cov), 21)
        self.assertEqual(event.tracks[2].source_track_ids, ("raw3",))

        [jpsi] = event.intermediates
        self.assertEqual(jpsi.prong_ids, ("e0", "e1"))
        self.assertEqual(jpsi.hf_flag, 1 << int(TwoProngDecay.JPSI_TO_EE))
        self.assertAlmostEqual(jpsi.rapidity, 0.3)

        self.assertEqual([p.index for p in event.particles], [0, 1, 2])
        self.assertEqual(event.particles[0].daughter_indices, (1, 2))
        self.assertEqual(event.track_labels, {"pi0": 2})

    def test_simulation_fields_are_optional(self) -> None:
        payload = _event_payload()
        for key in ("intermediates", "particles", "track_labels"):
            del payload["events"][0][key]
        with tempfile.TemporaryDirectory() as tmpdir:
            [event] = load_events_json(_write(tmpdir, "events.json", payload))
        self.assertEqual(event.intermediates, ())
        self.assertEqual(event.particles, ())
        self.assertEqual(event.track_labels, {})

    def test_malformed_inputs_raise_value_error(self) -> None:
        """Missing fields and wrong covariance sizes name the offending entry."""
        broken_track = _event_payload()
        del broken_track["events"][0]["tracks"][1]["px"]
        short_cov = _event_payload()
        short_cov["events"][0]["collision"]["cov"] = [1e-6, 0.0, 1e-6]
        bad_prongs = _event_payload()
        bad_prongs["events"][0]["intermediates"][0]["prong_ids"] = ["e0"]
        scalar_mothers = _event_payload()
        scalar_mothers["events"][0]["particles"][1]["mother_indices"] = 3
        word_charge = _event_payload()
        word_charge["events"][0]["tracks"][0]["charge"] = "plus"
        fractional_flag = _event_payload()
        fractional_flag["events"][0]["intermediates"][0]["selection_flag"] = 1.5
        text_label = _event_payload()
        text_label["events"][0]["track_labels"] = {"pi0": "two"}
        dangling_daughter = _event_payload()
        dangling_daughter["events"][0]["particles"][0]["daughter_indices"] = [1, 7]
        shifted_index = _event_payload()
        shifted_index["events"][0]["particles"][2]["index"] = 5
        cases = {
            "track": (broken_track, "px"),
            "cov": (short_cov, "collision"),
            "prongs": (bad_prongs, "prong_ids"),
            "no_events": ({"evts": []}, "events"),
            "mother_indices": (scalar_mothers, "'mother_indices' for particle 1"),
            "charge": (word_charge, "'charge' for track 0"),
            "selection_flag": (fractional_flag, "'selection_flag' for intermediate 0"),
            "track_label": (text_label, "track 'pi0'"),
            "daughter_link": (dangling_daughter, "particle links in event 'evt42'"),
            "particle_index": (shifted_index, "declares index 5"),
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            for name, (payload, fragment) in cases.items():
                with self.subTest(name=name):
                    path = _write(tmpdir, f"{name}.json", payload)
                    with self.assertRaisesRegex(ValueError, fragment):
                        load_events_json(path)

    def test_null_track_labels_mark_unmatched_tracks(self) -> None:
        """A null label drops the track from the label map instead of failing."""
        payload = _event_payload()
        payload["events"][0]["track_labels"] = {"pi0": 2, "e0": None, "e1": 1.0}
        with tempfile.TemporaryDirectory() as tmpdir:
            [event] = load_events_json(_write(tmpdir, "events.json", payload))
        self.assertEqual(event.track_labels, {"pi0": 2, "e1": 1})
        self.assertIsInstance(event.track_labels["e1"], int)


class TestConfigLoader(unittest.TestCase):
    """Validate the JSON run configuration."""

    def test_sections_and_enums_are_parsed(self) -> None:
        payload = {
            "fitter": {"bz": 2.0, "propagate_to_pca": False, "max_iterations": 5},
            "intermediate_selection": {"decay": "jpsi_to_mumu", "max_rapidity": 0.9},
            "partner_selection": {"charge_sign": 0, "min_eta": -0.8, "max_eta": 0.8},
            "matching": {"mother_pdgs": [20443]},
            "jets": {"jet_r": 0.6, "candidate_decay": 1},
            "partner_mass": 0.13957,
            "do_mc": True,
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config_json(_write(tmpdir, "config.json", payload))

        self.assertEqual(config.fitter.bz, 2.0)
        self.assertFalse(config.fitter.propagate_to_pca)
        self.assertEqual(config.fitter.max_iterations, 5)
        self.assertEqual(config.intermediate_selection.decay, TwoProngDecay.JPSI_TO_MUMU)
        self.assertEqual(config.intermediate_selection.max_rapidity, 0.9)
        self.assertEqual(config.partner_selection.charge_sign, 0)
        self.assertIsNone(config.partner_selection.min_energy)
        self.assertEqual(config.partner_selection.max_eta, 0.8)
        self.assertEqual(config.matching.mother_pdgs, (20443,))
        self.assertEqual(config.jets.candidate_decay, TwoProngDecay.JPSI_TO_EE)
        self.assertAlmostEqual(config.partner_mass, 0.13957)
        self.assertTrue(config.do_mc)

    def test_partner_mass_accepts_particle_names(self) -> None:
        """The partner mass may be given as a particle name instead of a number."""
        with tempfile.TemporaryDirectory() as tmpdir:
            pion = load_config_json(_write(tmpdir, "pi.json", {"partner_mass": "pi"}))
            photon = load_config_json(_write(tmpdir, "gamma.json", {"partner_mass": "Gamma"}))
            with self.assertRaises(ValueError):
                load_config_json(_write(tmpdir, "bad.json", {"partner_mass": "graviton"}))
        self.assertAlmostEqual(pion.partner_mass, make_pion().mass)
        self.assertEqual(photon.partner_mass, 0.0)

    def test_empty_document_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            config = load_config_json(_write(tmpdir, "config.json", {}))
        self.assertEqual(config.fitter.bz, 5.0)
        self.assertEqual(config.intermediate_selection.decay, TwoProngDecay.JPSI_TO_EE)
        self.assertFalse(config.do_mc)

    def test_unknown_keys_and_bad_values_are_rejected(self) -> None:
        cases = {
            "section": {"fitterr": {}},
            "key": {"fitter": {"bzz": 1.0}},
            "enum": {"intermediate_selection": {"decay": "b_to_jpsi_k"}},
            "bool": {"fitter": {"use_abs_dca": "yes"}},
            "do_mc": {"do_mc": 1},
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            for name, payload in cases.items():
                with self.subTest(name=name):
                    with self.assertRaises(ValueError):
                        load_config_json(_write(tmpdir, f"{name}.json", payload))


class TestTableWriters(unittest.TestCase):
    """Validate tabular export of truth labels."""

    def test_misaligned_event_ids_are_rejected(self) -> None:
        with self.assertRaises(ValueError):
            write_match_table("unused.csv", [MatchResult()], event_ids=["a", "b"])

    @unittest.skipUnless(HAS_PANDAS, "pandas is not installed")
    def test_match_table_csv(self) -> None:
        import pandas as pd

        results = [
            MatchResult(),
            MatchResult(flag=ChicDecay.JPSI_TO_EE_GAMMA, origin=Origin.NON_PROMPT),
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "labels.csv"
            write_match_table(path, results, event_ids=["evt0", "evt0"], indices=[4, 9])
            df = pd.read_csv(path)
        self.assertEqual(list(df["index"]), [4, 9])
        self.assertEqual(list(df["flag"]), [0, int(ChicDecay.JPSI_TO_EE_GAMMA)])
        self.assertEqual(list(df["origin"]), [int(Origin.NONE), int(Origin.NON_PROMPT)])

    @unittest.skipUnless(HAS_PANDAS, "pandas is not installed")
    def test_empty_tables_keep_their_header(self) -> None:
        """Writing zero rows still produces the full column layout."""
        import pandas as pd

        writers = {
            "candidates": (lambda p: write_candidates_table(p, []), CANDIDATE_COLUMNS),
            "matches": (lambda p: write_match_table(p, []), MATCH_COLUMNS),
            "event_matches": (
                lambda p: write_match_table(p, [], event_ids=[]),
                ("event_id", *MATCH_COLUMNS),
            ),
            "jets": (lambda p: write_jets_table(p, []), JET_COLUMNS),
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            for name, (write, columns) in writers.items():
                with self.subTest(name=name):
                    path = Path(tmpdir) / f"{name}.csv"
                    write(path)
                    df = pd.read_csv(path)
                    self.assertEqual(list(df.columns), list(columns))
                    self.assertEqual(len(df), 0)
        self.assertIn("jet_area", JET_COLUMNS)
        self.assertIn("sv_cov_zz", CANDIDATE_COLUMNS)

    def test_unknown_suffix_is_rejected(self) -> None:
        if not HAS_PANDAS:
            self.skipTest("pandas is not installed")
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                write_match_table(Path(tmpdir) / "labels.txt", [MatchResult()])


if __name__ == "__main__":
    unittest.main()
