"""Unit tests for the chi_c delta-mass peak study example."""

from __future__ import annotations

import importlib.util
import json
import sys
import tempfile
import unittest
from pathlib import Path

from hfcand import ChicDecay, make_chic1, make_chic2, make_jpsi

HAS_PANDAS = importlib.util.find_spec("pandas") is not None
SCRIPT = Path(__file__).resolve().parents[1] / "examples" / "chic_peak_study.py"


def _load_peak_study():
    spec = importlib.util.spec_from_file_location("chic_peak_study", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = module
    spec.loader.exec_module(module)
    return module


class TestPeakStudyChannels(unittest.TestCase):
    """Channel presets pair a lepton flag with a chi_c state window."""

    def test_presets_cover_both_states_in_both_lepton_channels(self) -> None:
        study = _load_peak_study()
        self.assertEqual(sorted(study.CHANNELS), ["chic1_ee", "chic1_mumu", "chic2_ee", "chic2_mumu"])
        jpsi = make_jpsi().mass
        for lepton, decay in (("ee", ChicDecay.JPSI_TO_EE_GAMMA), ("mumu", ChicDecay.JPSI_TO_MUMU_GAMMA)):
            chic1 = study.CHANNELS[f"chic1_{lepton}"]
            chic2 = study.CHANNELS[f"chic2_{lepton}"]
            self.assertEqual(chic1.query, f"hf_flag == {int(decay)}")
            self.assertEqual(chic2.query, chic1.query)
            self.assertAlmostEqual(chic1.delta_center, make_chic1().mass - jpsi)
            self.assertAlmostEqual(chic2.delta_center, make_chic2().mass - jpsi)

    @unittest.skipUnless(HAS_PANDAS, "pandas is not installed")
    def test_state_is_chosen_by_delta_mass_window(self) -> None:
        """Dielectron chi_c2 counting ignores the chi_c1 entry and the dimuon row."""
        import pandas as pd

        study = _load_peak_study()
        jpsi = make_jpsi().mass
        ee = int(ChicDecay.JPSI_TO_EE_GAMMA)
        mumu = int(ChicDecay.JPSI_TO_MUMU_GAMMA)
        rows = [
            {"mass": make_chic1().mass, "hf_flag": ee},
            {"mass": make_chic2().mass, "hf_flag": ee},
            {"mass": make_chic2().mass, "hf_flag": mumu},
        ]
        with tempfile.TemporaryDirectory() as tmpdir:
            table = Path(tmpdir) / "cands.csv"
            pd.DataFrame(rows).to_csv(table, index=False)
            out = Path(tmpdir) / "summary.json"
            code = study.main(
                ["--input", str(table), "--channel", "chic2_ee", "--jpsi-mass", str(jpsi), "--out-json", str(out)]
            )
            summary = json.loads(out.read_text(encoding="utf-8"))

        self.assertEqual(code, 0)
        self.assertEqual(summary["n_selected_rows"], 2)
        self.assertEqual(summary["n_sig_window"], 1.0)
        self.assertEqual(summary["n_sideband_left"], 0.0)


if __name__ == "__main__":
    unittest.main()
