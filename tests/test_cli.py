import json

import numpy as np
import pytest

sf = pytest.importorskip("soundfile")

from mastering_engine.mastering_studio import build_cli, main
from mastering_engine.system_utils import StabilityChecks


@pytest.fixture()
def wav_path(tmp_path):
    path = tmp_path / "input.wav"
    sf.write(str(path), StabilityChecks.generate_example(sr=44100, seconds=1.0), 44100)
    return path


def test_cli_flags():
    args = build_cli().parse_args(["--in", "a.wav", "--set", "eq_low=2", "--set", "stereoWidth=120", "--analyze-only"])
    assert args.inp == "a.wav"
    assert args.assignments == ["eq_low=2", "stereoWidth=120"]
    assert args.analyze_only


def test_analyze_only(wav_path, capsys):
    assert main(["--in", str(wav_path), "--analyze-only"]) == 0
    out = capsys.readouterr().out
    assert "Tempo:" in out
    assert "Key:" in out


def test_render_with_overrides_and_metrics(wav_path, tmp_path):
    out_path = tmp_path / "master.wav"
    log_path = tmp_path / "metrics.json"
    code = main(
        [
            "--in", str(wav_path),
            "--out", str(out_path),
            "--preset", "Warm Tape",
            "--set", "stereo_width=120",
            "--metrics-log", str(log_path),
        ]
    )
    assert code == 0
    data, sr = sf.read(str(out_path), dtype="int16")
    assert sr == 44100
    assert data.shape == (44100, 2)
    logs = json.loads(log_path.read_text(encoding="utf-8"))
    assert logs[0]["settings"]["stereo_width"] == 120.0
    assert logs[0]["render_name"] == "master"


def test_bad_input_returns_error_code(tmp_path):
    assert main(["--in", str(tmp_path / "missing.wav")]) == 2


def test_bad_assignment_returns_error_code(wav_path):
    assert main(["--in", str(wav_path), "--set", "stereo_width"]) == 2


def test_self_test():
    assert main(["--self-test"]) == 0
