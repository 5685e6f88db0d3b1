"""Unit tests for the command-line entry point."""

from __future__ import annotations

import importlib.util
import json
import tempfile
import unittest
from pathlib import Path

from hfcand.cli import build_parser, main, resolve_config

HAS_PANDAS = importlib.util.find_spec("pandas") is not None


def _cov6() -> list[float]:
    diag = [1e-6, 1e-6, 1e-6, 1e-8, 1e-8, 1e-8]
    return [diag[i] if i == j else 0.0 for i in range(6) for j in range(i + 1)]


def _track(track_id: str, pos, mom, charge: int) -> dict:
    return {
        "track_id": track_id,
        "x": pos[0],
        "y": pos[1],
        "z": pos[2],
        "px": mom[0],
        "py": mom[1],
        "pz": mom[2],
        "cov": _cov6(),
        "charge": charge,
    }


def _payload() -> dict:
    """One simulated chi_c1 -> J/psi(e+ e-) pi+ event with labelled tracks."""
    return {
        "events": [
            {
                "event_id": "evt0",
                "collision": {"x": 0.0, "y": 0.0, "z": 0.0, "cov": [1e-6, 0.0, 1e-6, 0.0, 0.0, 1e-6]},
                "tracks": [
                    _track("e_minus", (0.0, 0.0, 1.0), (0.5, 0.3, 1.0), -1),
                    _track("e_plus", (0.0, 0.0, 1.0), (0.5, -0.3, 1.0), 1),
                    _track("pi", (0.0, 0.001, 0.5), (0.0, 0.0, 0.5), 1),
                ],
                "intermediates": [
                    {
                        "candidate_id": "jpsi0",
                        "x": 0.0,
                        "y": 0.0,
                        "z": 1.0,
                        "px": 1.0,
                        "py": 0.0,
                        "pz": 2.0,
                        "prong_ids": ["e_minus", "e_plus"],
                        "hf_flag": 2,
                        "selection_flag": 1,
                    }
                ],
                "particles": [
                    {"pdg_code": 20443, "daughter_indices": [1, 2]},
                    {"pdg_code": 443, "mother_indices": [0], "daughter_indices": [3, 4]},
                    {"pdg_code": 211, "mother_indices": [0]},
                    {"pdg_code": 11, "mother_indices": [1]},
                    {"pdg_code": -11, "mother_indices": [1]},
                ],
                "track_labels": {"pi": 2, "e_minus": 3, "e_plus": 4},
            }
        ]
    }


CUSTOM_SCRIPT = '''
import json
from pathlib import Path


def process(candidates, context):
    summary = {
        "n_candidates": len(candidates),
        "rec_flags": [int(r.flag) for r in context["mc_rec"]],
        "n_gen_signal": sum(g.is_signal for g in context["mc_gen"]),
    }
    Path(context["output_path"]).with_suffix(".json").write_text(json.dumps(summary))
'''


class TestConfigResolution(unittest.TestCase):
    """Validate command-line overrides of the run configuration."""

    def test_overrides_apply_on_top_of_defaults(self) -> None:
        args = build_parser().parse_args(["--events", "e.json", "--out", "o.csv", "--bz", "2.0", "--do-mc"])
        config = resolve_config(args)
        self.assertEqual(config.fitter.bz, 2.0)
        self.assertTrue(config.do_mc)

    def test_truth_outputs_require_matching(self) -> None:
        args = build_parser().parse_args(["--events", "e.json", "--out", "o.csv", "--mc-rec-out", "r.csv"])
        with self.assertRaises(ValueError):
            resolve_config(args)

    def test_config_file_switch_can_be_disabled(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"do_mc": True, "fitter": {"bz": 0.5}}), encoding="utf-8")
            args = build_parser().parse_args(
                ["--events", "e.json", "--out", "o.csv", "--config", str(path), "--no-do-mc"]
            )
            config = resolve_config(args)
        self.assertFalse(config.do_mc)
        self.assertEqual(config.fitter.bz, 0.5)


@unittest.skipUnless(HAS_PANDAS, "pandas is not installed")
class TestMain(unittest.TestCase):
    """Run the full pipeline from JSON input to output tables."""

    def test_end_to_end_with_truth_and_custom_script(self) -> None:
        import pandas as pd

        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            events = tmp / "events.json"
            events.write_text(json.dumps(_payload()), encoding="utf-8")
            script = tmp / "summary.py"
            script.write_text(CUSTOM_SCRIPT, encoding="utf-8")
            out = tmp / "candidates.csv"

            code = main(
                [
                    "--events", str(events),
                    "--out", str(out),
                    "--do-mc",
                    "--mc-rec-out", str(tmp / "rec.csv"),
                    "--mc-gen-out", str(tmp / "gen.csv"),
                    "--monitoring-out", str(tmp / "monitoring.json"),
                    "--custom-script", str(script),
                ]
            )
            self.assertEqual(code, 0)

            candidates = pd.read_csv(out)
            rec = pd.read_csv(tmp / "rec.csv")
            gen = pd.read_csv(tmp / "gen.csv")
            monitoring = json.loads((tmp / "monitoring.json").read_text(encoding="utf-8"))
            summary = json.loads((tmp / "candidates.json").read_text(encoding="utf-8"))

        self.assertEqual(list(candidates["partner_track_id"]), ["pi"])
        self.assertEqual(list(candidates["intermediate_id"]), ["jpsi0"])
        self.assertEqual(list(rec["flag"]), [1])
        self.assertEqual(list(gen["flag"]), [1, 0, 0, 0, 0])
        self.assertEqual(list(gen["event_id"]), ["evt0"] * 5)
        self.assertEqual(monitoring["mass_candidate"]["entries"], 1.0)
        self.assertEqual(monitoring["shared_track"]["entries"], 1.0)
        self.assertEqual(summary, {"n_candidates": 1, "rec_flags": [1], "n_gen_signal": 1})

    def test_custom_script_without_process_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            tmp = Path(tmpdir)
            events = tmp / "events.json"
            events.write_text(json.dumps(_payload()), encoding="utf-8")
            script = tmp / "empty.py"
            script.write_text("VALUE = 1\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                main(["--events", str(events), "--out", str(tmp / "c.csv"), "--custom-script", str(script)])


if __name__ == "__main__":
    unittest.main()
