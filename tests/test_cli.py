"""Tests for audiotune CLI."""

import json
import os
import subprocess
import sys

import pytest

import audiotune
from audiotune.cli import (
    CATEGORIES,
    COMMANDS,
    REQUIRED,
    build_parser,
    format_analysis,
    main,
    prepare_kwargs,
    resolve_output_path,
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def wav_file(tmp_path):
    """Generate a short mono sine wave as a test fixture."""
    buf = audiotune.synth_wave(
        waveform="sine",
        frequency=440.0,
        amplitude=0.8,
        duration=0.5,
        sample_rate=44100,
    )
    path = str(tmp_path / "test_input.wav")
    audiotune.save_audio(path, buf)
    return path


@pytest.fixture
def wav_file2(tmp_path):
    """Generate a second sine wave a fifth above the first."""
    buf = audiotune.synth_wave(
        waveform="sine",
        frequency=660.0,
        amplitude=0.6,
        duration=0.5,
        sample_rate=44100,
    )
    path = str(tmp_path / "test_input2.wav")
    audiotune.save_audio(path, buf)
    return path


# =============================================================================
# Registry integrity tests
# =============================================================================


class TestRegistry:
    def test_all_commands_have_required_keys(self):
        for name, spec in COMMANDS.items():
            for key in ("func", "category", "input", "help", "params"):
                assert key in spec, f"{name}: missing '{key}'"

    def test_all_categories_are_valid(self):
        for name, spec in COMMANDS.items():
            assert spec["category"] in CATEGORIES, (
                f"{name}: unknown category '{spec['category']}'"
            )

    def test_all_input_types_are_valid(self):
        valid = {"single", "dual", "synth", "analysis", "numeric"}
        for name, spec in COMMANDS.items():
            assert spec["input"] in valid, (
                f"{name}: invalid input type '{spec['input']}'"
            )

    def test_all_funcs_exist_on_audiotune(self):
        for name, spec in COMMANDS.items():
            assert hasattr(audiotune, spec["func"]), (
                f"{name}: audiotune.{spec['func']} does not exist"
            )

    def test_param_types_are_valid(self):
        valid_types = {int, float, str, "engine", "waveform"}
        for cmd_name, spec in COMMANDS.items():
            for param_name, (ptype, _default, _help) in spec["params"].items():
                assert ptype in valid_types, (
                    f"{cmd_name}.{param_name}: invalid type '{ptype}'"
                )

    def test_command_names_use_hyphens(self):
        for name in COMMANDS:
            assert "_" not in name, f"Command '{name}' should use hyphens, not underscores"

    def test_every_category_has_a_command(self):
        used = {spec["category"] for spec in COMMANDS.values()}
        assert used == set(CATEGORIES)


# =============================================================================
# Parser tests
# =============================================================================


class TestParser:
    def test_parse_single_input_command(self):
        args = build_parser().parse_args(["pitch-shift", "in.wav", "--ratio", "1.5"])
        assert args.command == "pitch-shift"
        assert args.input == "in.wav"
        assert args.ratio == 1.5
        assert args.engine == "phase-vocoder"

    def test_parse_dual_input_command(self):
        args = build_parser().parse_args(
            ["tune", "take.wav", "ref.wav", "--engine", "psola"]
        )
        assert args.input1 == "take.wav"
        assert args.input2 == "ref.wav"
        assert args.engine == "psola"
        assert args.start_sample == -1

    def test_parse_synth_command(self):
        args = build_parser().parse_args(
            ["synth-wave", "--waveform", "square", "--frequency", "220"]
        )
        assert args.waveform == "square"
        assert args.frequency == 220.0
        assert args.sample_rate == 48000

    def test_parse_analysis_command(self):
        args = build_parser().parse_args(["detect-pitch", "in.wav", "--threshold", "0.1"])
        assert args.threshold == 0.1
        assert args.window_size == 2048
        assert args.format == "text"

    def test_audio_format_options(self):
        args = build_parser().parse_args(
            ["transpose", "in.wav", "--semitones", "3", "--format", "pcm16", "-o", "x.wav"]
        )
        assert args.format == "pcm16"
        assert args.output == "x.wav"

    def test_analysis_format_options(self):
        for fmt in ("text", "json", "csv"):
            args = build_parser().parse_args(["detect-pitch", "in.wav", "--format", fmt])
            assert args.format == fmt

    def test_invalid_engine_exits(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(
                ["pitch-shift", "in.wav", "--ratio", "1.2", "--engine", "granular"]
            )

    def test_missing_required_param_exits(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["pitch-shift", "in.wav"])

    def test_verbose_flag(self):
        args = build_parser().parse_args(["-v", "version"])
        assert args.verbose is True

    def test_utility_commands(self):
        parser = build_parser()
        assert parser.parse_args(["list", "shift"]).category == "shift"
        assert parser.parse_args(["version"]).command == "version"
        assert parser.parse_args(["info", "in.wav"]).input == "in.wav"

    def test_help_groups_by_category(self):
        text = build_parser().format_help()
        for desc in CATEGORIES.values():
            assert desc in text
        assert "Utility commands" in text


# =============================================================================
# Output path resolution tests
# =============================================================================


class TestOutputPath:
    def test_explicit_file_path(self):
        class Args:
            output = "/tmp/out.wav"

        assert resolve_output_path(Args(), "pitch-shift", "in.wav") == "/tmp/out.wav"

    def test_directory_output(self, tmp_path):
        class Args:
            output = str(tmp_path)

        result = resolve_output_path(Args(), "tune", "/data/take.wav")
        assert result == os.path.join(str(tmp_path), "take_tune.wav")

    def test_auto_name_from_input(self):
        class Args:
            output = None

        result = resolve_output_path(Args(), "transpose", "/data/take.wav")
        assert result == os.path.join("/data", "take_transpose.wav")

    def test_auto_name_synth(self):
        class Args:
            output = None

        assert resolve_output_path(Args(), "synth-wave") == "output_synth-wave.wav"


# =============================================================================
# Parameter preparation tests
# =============================================================================


class TestPrepareKwargs:
    def test_basic_params(self):
        args = build_parser().parse_args(["pitch-shift", "in.wav", "--ratio", "0.75"])
        kwargs = prepare_kwargs(COMMANDS["pitch-shift"], args)
        assert kwargs == {"ratio": 0.75, "engine": "phase-vocoder"}

    def test_hyphenated_params(self):
        args = build_parser().parse_args(["detect-pitch", "in.wav", "--start-sample", "100"])
        kwargs = prepare_kwargs(COMMANDS["detect-pitch"], args)
        assert kwargs["start_sample"] == 100
        assert kwargs["window_size"] == 2048

    def test_required_sentinel_not_leaked(self):
        args = build_parser().parse_args(
            ["shift-ratio", "--recorded", "440", "--reference", "660"]
        )
        kwargs = prepare_kwargs(COMMANDS["shift-ratio"], args)
        assert REQUIRED not in kwargs.values()


# =============================================================================
# Handler integration tests (actually run audiotune functions)
# =============================================================================


class TestHandlerSingle:
    @pytest.mark.parametrize("engine", ["phase-vocoder", "psola"])
    def test_pitch_shift_keeps_duration(self, wav_file, tmp_path, engine):
        out = str(tmp_path / "shifted.wav")
        main(["pitch-shift", wav_file, "--ratio", "1.25", "--engine", engine, "-o", out])
        assert os.path.exists(out)
        result = audiotune.load_audio(out)
        original = audiotune.load_audio(wav_file)
        assert result.length == original.length
        assert result.sample_rate == original.sample_rate

    def test_transpose_pcm16(self, wav_file, tmp_path):
        out = str(tmp_path / "down.wav")
        main(["transpose", wav_file, "--semitones", "-5", "--format", "pcm16", "-o", out])
        fmt, frames = audiotune.read_info(out)
        assert fmt.name == "pcm16"
        assert frames == audiotune.load_audio(wav_file).length

    def test_output_directory(self, wav_file, tmp_path):
        outdir = str(tmp_path / "outdir")
        os.makedirs(outdir)
        main(["pitch-shift", wav_file, "--ratio", "2.0", "-o", outdir])
        assert os.path.exists(os.path.join(outdir, "test_input_pitch-shift.wav"))

    def test_auto_name_output(self, wav_file, capsys):
        main(["transpose", wav_file, "--semitones", "2"])
        expected = wav_file.replace(".wav", "_transpose.wav")
        assert os.path.exists(expected)
        assert expected in capsys.readouterr().out

    def test_missing_input_file(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc:
            main(["pitch-shift", str(tmp_path / "nonexistent.wav"), "--ratio", "1.1"])
        assert exc.value.code == 1
        assert "file not found" in capsys.readouterr().err

    def test_too_short_for_vocoder(self, tmp_path, capsys):
        path = str(tmp_path / "blip.wav")
        audiotune.save_audio(path, audiotune.synth_wave(duration=0.01))
        with pytest.raises(SystemExit) as exc:
            main(["pitch-shift", path, "--ratio", "1.5", "-o", str(tmp_path / "o.wav")])
        assert exc.value.code == 1
        assert "Error:" in capsys.readouterr().err

    def test_corrupt_input(self, tmp_path, capsys):
        path = tmp_path / "bad.wav"
        path.write_bytes(b"not a wav file at all, just some bytes padding it out")
        with pytest.raises(SystemExit):
            main(["pitch-shift", str(path), "--ratio", "1.5"])
        assert "Error:" in capsys.readouterr().err


class TestHandlerDual:
    def test_tune(self, wav_file, wav_file2, tmp_path, capsys):
        out = str(tmp_path / "tuned.wav")
        main(["tune", wav_file, wav_file2, "-o", out])
        assert os.path.exists(out)
        assert audiotune.load_audio(out).length == audiotune.load_audio(wav_file).length
        assert "Shift ratio" in capsys.readouterr().err

    def test_missing_second_input(self, wav_file, tmp_path):
        with pytest.raises(SystemExit):
            main(["tune", wav_file, str(tmp_path / "nope.wav"), "-o", "out.wav"])


class TestHandlerSynth:
    @pytest.mark.parametrize("waveform", ["sine", "square", "saw", "triangle"])
    def test_synth_wave(self, tmp_path, waveform):
        out = str(tmp_path / "tone.wav")
        main(["synth-wave", "--waveform", waveform, "--frequency", "220",
              "--duration", "0.25", "--sample-rate", "22050", "-o", out])
        result = audiotune.load_audio(out)
        assert result.sample_rate == 22050
        assert result.length == 5512 or result.length == 5513


class TestHandlerAnalysis:
    def test_detect_pitch_text(self, wav_file, capsys):
        main(["detect-pitch", wav_file])
        out = capsys.readouterr().out
        assert "Pitch:" in out
        assert "A4" in out

    def test_detect_pitch_json(self, wav_file, capsys):
        main(["detect-pitch", wav_file, "--format", "json"])
        data = json.loads(capsys.readouterr().out)
        assert data["pitch"] == pytest.approx(440.0, rel=0.01)
        assert data["sample_rate"] == 44100
        assert data["actual_start_sample"] == 0

    def test_detect_pitch_csv(self, wav_file, capsys):
        main(["detect-pitch", wav_file, "--format", "csv"])
        header = capsys.readouterr().out.splitlines()[0]
        assert header.startswith("pitch,confidence")

    def test_detect_pitch_to_file(self, wav_file, tmp_path):
        out = str(tmp_path / "pitch.txt")
        main(["detect-pitch", wav_file, "-o", out])
        with open(out) as f:
            assert "Confidence:" in f.read()

    def test_start_out_of_range(self, wav_file, capsys):
        with pytest.raises(SystemExit):
            main(["detect-pitch", wav_file, "--start-sample", "10000000"])
        assert "out of range" in capsys.readouterr().err

    def test_shift_ratio(self, capsys):
        main(["shift-ratio", "--recorded", "440", "--reference", "880", "--format", "json"])
        data = json.loads(capsys.readouterr().out)
        assert data["ratio"] == pytest.approx(2.0)

    def test_shift_ratio_degenerate(self, capsys):
        main(["shift-ratio", "--recorded", "0", "--reference", "440"])
        assert "1.000000" in capsys.readouterr().out


# =============================================================================
# Utility command tests
# =============================================================================


class TestVersion:
    def test_version_output(self, capsys):
        main(["version"])
        captured = capsys.readouterr()
        assert "audiotune" in captured.out
        assert audiotune.__version__ in captured.out


class TestList:
    def test_list_all(self, capsys):
        main(["list"])
        out = capsys.readouterr().out
        for cat in CATEGORIES:
            assert cat in out

    def test_list_category_filter(self, capsys):
        main(["list", "shift"])
        out = capsys.readouterr().out
        assert "pitch-shift" in out
        assert "transpose" in out
        assert "synth-wave" not in out

    def test_list_and_help_share_rows(self, capsys):
        main(["list"])
        out = capsys.readouterr().out
        help_text = build_parser().format_help()
        for name, spec in COMMANDS.items():
            assert name in out and spec["help"] in out
            assert spec["help"] in help_text
        # one block per category, separated by a blank line
        assert out.count("\n\n") == len(CATEGORIES) - 1


class TestInfo:
    def test_info_output(self, wav_file, capsys):
        main(["info", wav_file])
        out = capsys.readouterr().out
        assert "Format:      float" in out
        assert "Channels:    1" in out
        assert "Sample rate: 44100 Hz" in out
        assert "Frames:      22050" in out
        assert "Peak level:" in out

    def test_info_missing_file(self):
        with pytest.raises(SystemExit):
            main(["info", "/nonexistent/file.wav"])


# =============================================================================
# No-command shows help
# =============================================================================


class TestNoCommand:
    def test_no_args_shows_help(self, capsys):
        main([])
        assert "audiotune" in capsys.readouterr().out


# =============================================================================
# Analysis formatting tests
# =============================================================================


class TestFormatAnalysis:
    def _pitch_data(self, pitch=440.0):
        return {
            "pitch": pitch,
            "confidence": 0.97,
            "sample_rate": 48000,
            "num_samples": 2048,
            "buffer_size": 2048,
            "actual_start_sample": 0,
            "threshold": 0.15,
        }

    def test_pitch_text(self):
        text = format_analysis("detect-pitch", self._pitch_data(), "text")
        assert "440.00 Hz (A4)" in text

    def test_pitch_text_not_detected(self):
        text = format_analysis("detect-pitch", self._pitch_data(-1.0), "text")
        assert "not detected" in text

    def test_pitch_json(self):
        parsed = json.loads(format_analysis("detect-pitch", self._pitch_data(), "json"))
        assert parsed["pitch"] == 440.0
        assert parsed["confidence"] == 0.97

    def test_pitch_csv(self):
        lines = format_analysis("detect-pitch", self._pitch_data(), "csv").splitlines()
        assert lines[0] == (
            "pitch,confidence,sample_rate,num_samples,buffer_size,"
            "actual_start_sample,threshold"
        )
        assert lines[1].startswith("440.0,0.97,48000")

    def test_shift_ratio_text(self):
        data = {"recorded": 440.0, "reference": 880.0, "ratio": 2.0}
        text = format_analysis("shift-ratio", data, "text")
        assert "Ratio:     2.000000" in text
        assert "+12.00" in text


# =============================================================================
# Entry point
# =============================================================================


class TestEntryPoint:
    def test_module_invocation(self):
        result = subprocess.run(
            [sys.executable, "-m", "audiotune", "version"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert "audiotune" in result.stdout
