"""CLI for audiotune -- pitch detection, pitch shifting and retuning.

Usage:
    audiotune detect-pitch take.wav --format json
    audiotune pitch-shift take.wav --ratio 1.5 --engine psola -o up.wav
    audiotune tune take.wav reference.wav -o tuned.wav
    audiotune list shift
    python3 -m audiotune version
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

import audiotune
from audiotune.buffer import WAVEFORMS
from audiotune.shift import ENGINE_NAMES

# =============================================================================
# Sentinel for required parameters
# =============================================================================

REQUIRED = object()

# =============================================================================
# Categories
# =============================================================================

CATEGORIES = {
    "analyze": "Analysis (pitch detection, shift ratios)",
    "shift": "Pitch shifting (phase vocoder and PSOLA engines)",
    "tune": "Retune a recording to a reference",
    "synth": "Test signal synthesis",
}

# =============================================================================
# Command registry
# =============================================================================
#
# Each entry maps a CLI command name (hyphens) to:
#   func     - function name on the audiotune package
#   category - key into CATEGORIES
#   input    - "single" (one file in, audio out), "dual" (two files in,
#              audio out), "synth" (no input, audio out), "analysis" (one
#              file in, report out) or "numeric" (no input, report out)
#   help     - one-line description
#   params   - {flag-name: (type, default or REQUIRED, help)}

ENGINE_PARAM = ("engine", "phase-vocoder", "Shifting engine")

COMMANDS = {
    "detect-pitch": {
        "func": "detect_pitch",
        "category": "analyze",
        "input": "analysis",
        "help": "Detect the fundamental frequency with YIN",
        "params": {
            "start-sample": (int, 0, "First sample to analyse, -1 to find the audio start"),
            "window-size": (int, 2048, "Samples to analyse"),
            "threshold": (float, 0.15, "YIN threshold, lower is stricter"),
        },
    },
    "shift-ratio": {
        "func": "compute_shift_ratio",
        "category": "analyze",
        "input": "numeric",
        "help": "Ratio that moves a frequency onto a reference's note",
        "params": {
            "recorded": (float, REQUIRED, "Recorded frequency in Hz"),
            "reference": (float, REQUIRED, "Reference frequency in Hz"),
        },
    },
    "pitch-shift": {
        "func": "pitch_shift",
        "category": "shift",
        "input": "single",
        "help": "Shift pitch by a ratio, keeping duration",
        "params": {
            "ratio": (float, REQUIRED, "Pitch ratio, clamped to 0.5-2.0"),
            "engine": ENGINE_PARAM,
        },
    },
    "transpose": {
        "func": "transpose",
        "category": "shift",
        "input": "single",
        "help": "Shift pitch by semitones, keeping duration",
        "params": {
            "semitones": (float, REQUIRED, "Semitones, clamped to +/-12"),
            "engine": ENGINE_PARAM,
        },
    },
    "tune": {
        "func": "tune",
        "category": "tune",
        "input": "dual",
        "help": "Shift a recording onto the note of a reference recording",
        "params": {
            "engine": ENGINE_PARAM,
            "start-sample": (int, -1, "First sample to analyse, -1 to find the audio start"),
            "window-size": (int, 2048, "Samples to analyse"),
            "threshold": (float, 0.15, "YIN threshold, lower is stricter"),
        },
    },
    "synth-wave": {
        "func": "synth_wave",
        "category": "synth",
        "input": "synth",
        "help": "Generate a test waveform",
        "params": {
            "waveform": ("waveform", "sine", "Waveform shape"),
            "frequency": (float, 440.0, "Frequency in Hz"),
            "amplitude": (float, 0.8, "Peak amplitude"),
            "duration": (float, 1.0, "Duration in seconds"),
            "sample-rate": (int, 48000, "Sample rate in Hz"),
        },
    },
}

# =============================================================================
# Custom help formatter
# =============================================================================


def _commands_by_category() -> dict[str, list[tuple[str, str]]]:
    """``(name, help)`` pairs of every registered command, keyed by category."""
    grouped: dict[str, list[tuple[str, str]]] = {cat: [] for cat in CATEGORIES}
    for name, spec in COMMANDS.items():
        grouped[spec["category"]].append((name, spec["help"]))
    return grouped


def _command_rows(commands: list[tuple[str, str]], indent: str) -> list[str]:
    width = max((len(name) for name, _ in commands), default=0)
    return [f"{indent}{name:<{width}}  {text}" for name, text in sorted(commands)]


class CategoryHelpFormatter(argparse.RawDescriptionHelpFormatter):
    """Lists subcommands under their category headings instead of one flat list."""

    def _format_action(self, action):
        if not isinstance(action, argparse._SubParsersAction):
            return super()._format_action(action)
        sections = [
            (CATEGORIES[cat], commands)
            for cat, commands in _commands_by_category().items()
            if commands
        ]
        utility = [
            (name, sub.description or "")
            for name, sub in action.choices.items()
            if name not in COMMANDS
        ]
        if utility:
            sections.append(("Utility commands", utility))
        lines = []
        for heading, commands in sections:
            lines.append(f"\n  {heading}:")
            lines.extend(_command_rows(commands, "    "))
        return "\n".join(lines) + "\n"


# =============================================================================
# Parser construction
# =============================================================================


def _add_param(sub, param_name: str, ptype, default, help_text: str) -> None:
    kw: dict = {"help": help_text, "dest": param_name.replace("-", "_")}
    if ptype == "engine":
        kw.update(type=str, choices=ENGINE_NAMES)
    elif ptype == "waveform":
        kw.update(type=str, choices=list(WAVEFORMS))
    else:
        kw["type"] = ptype
    if default is REQUIRED:
        kw["required"] = True
    else:
        kw["default"] = default
    sub.add_argument(f"--{param_name}", **kw)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="audiotune",
        description="audiotune - pitch detection and pitch shifting CLI",
        formatter_class=CategoryHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log processing details"
    )

    subparsers = parser.add_subparsers(
        dest="command", title="commands", metavar="<command>"
    )

    for cmd_name, spec in COMMANDS.items():
        input_type = spec["input"]
        sub = subparsers.add_parser(
            cmd_name,
            help=spec["help"],
            description=spec["help"],
        )

        if input_type in ("single", "analysis"):
            sub.add_argument("input", help="Input WAV file")
        elif input_type == "dual":
            sub.add_argument("input1", help="Recording to retune")
            sub.add_argument("input2", help="Reference recording")

        for param_name, (ptype, default, help_text) in spec["params"].items():
            _add_param(sub, param_name, ptype, default, help_text)

        if input_type in ("single", "dual", "synth"):
            sub.add_argument(
                "-o",
                "--output",
                help="Output file path, or directory (auto-names file)",
            )
            sub.add_argument(
                "--format",
                choices=["float", "pcm16"],
                default="float",
                help="Audio output format (default: float)",
            )
        else:
            sub.add_argument(
                "-o",
                "--output",
                help="Write output to file instead of stdout",
            )
            sub.add_argument(
                "--format",
                choices=["text", "json", "csv"],
                default="text",
                help="Output format (default: text)",
            )

    # Built-in utility commands
    sub_list = subparsers.add_parser(
        "list", description="List available commands by category"
    )
    sub_list.add_argument(
        "category",
        nargs="?",
        choices=list(CATEGORIES.keys()),
        help="Show commands in a specific category",
    )

    subparsers.add_parser("version", description="Show version information")

    sub_info = subparsers.add_parser("info", description="Show audio file information")
    sub_info.add_argument("input", help="Input WAV file")

    return parser


# =============================================================================
# Output path resolution
# =============================================================================


def resolve_output_path(args, cmd_name: str, input_path: str | None = None) -> str:
    output = getattr(args, "output", None)

    if output:
        if os.path.isdir(output):
            stem = _input_stem(input_path) if input_path else "output"
            return os.path.join(output, f"{stem}_{cmd_name}.wav")
        return output

    if input_path:
        stem = _input_stem(input_path)
        dirn = os.path.dirname(input_path) or "."
        return os.path.join(dirn, f"{stem}_{cmd_name}.wav")

    return f"output_{cmd_name}.wav"


def _input_stem(path: str) -> str:
    return os.path.splitext(os.path.basename(path))[0]


# =============================================================================
# Parameter preparation
# =============================================================================


def prepare_kwargs(spec: dict, args: argparse.Namespace) -> dict:
    """Convert parsed args to kwargs for the target function."""
    kwargs = {}
    for param_name in spec["params"]:
        kwarg_name = param_name.replace("-", "_")
        value = getattr(args, kwarg_name, None)
        if value is None:
            continue
        kwargs[kwarg_name] = value
    return kwargs


# =============================================================================
# Handlers
# =============================================================================


def _fail(message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _require_files(*paths: str) -> None:
    for path in paths:
        if not os.path.exists(path):
            _fail(f"file not found: {path}")


def _write_result(args, cmd_name: str, result, input_path: str | None = None) -> None:
    if result is None:
        _fail(f"{cmd_name} produced no output")
    output_path = resolve_output_path(args, cmd_name, input_path)
    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    audiotune.save_audio(output_path, result, format=args.format)
    print(output_path)


def _write_report(args, text: str) -> None:
    if args.output:
        os.makedirs(os.path.dirname(args.output) or ".", exist_ok=True)
        with open(args.output, "w") as f:
            f.write(text)
        print(args.output)
    else:
        print(text)


def handle_single(cmd_name: str, spec: dict, args: argparse.Namespace) -> None:
    input_path = args.input
    _require_files(input_path)

    buf = audiotune.load_audio(input_path)
    func = getattr(audiotune, spec["func"])
    result = func(buf, **prepare_kwargs(spec, args))
    _write_result(args, cmd_name, result, input_path)


def handle_dual(cmd_name: str, spec: dict, args: argparse.Namespace) -> None:
    _require_files(args.input1, args.input2)

    recorded = audiotune.load_audio(args.input1)
    reference = audiotune.load_audio(args.input2)
    func = getattr(audiotune, spec["func"])
    result = func(recorded, reference, **prepare_kwargs(spec, args))

    if result.ratio != 1.0:
        print(f"Shift ratio: {result.ratio:.4f}", file=sys.stderr)
    _write_result(args, cmd_name, result.output, args.input1)


def handle_synth(cmd_name: str, spec: dict, args: argparse.Namespace) -> None:
    func = getattr(audiotune, spec["func"])
    result = func(**prepare_kwargs(spec, args))
    _write_result(args, cmd_name, result)


def handle_analysis(cmd_name: str, spec: dict, args: argparse.Namespace) -> None:
    input_path = args.input
    _require_files(input_path)

    buf = audiotune.load_audio(input_path)
    func = getattr(audiotune, spec["func"])
    result = func(buf, **prepare_kwargs(spec, args))
    _write_report(args, format_analysis(cmd_name, result.to_dict(), args.format))


def handle_numeric(cmd_name: str, spec: dict, args: argparse.Namespace) -> None:
    func = getattr(audiotune, spec["func"])
    kwargs = prepare_kwargs(spec, args)
    ratio = func(kwargs["recorded"], kwargs["reference"])
    data = dict(kwargs, ratio=ratio)
    _write_report(args, format_analysis(cmd_name, data, args.format))


HANDLERS = {
    "single": handle_single,
    "dual": handle_dual,
    "synth": handle_synth,
    "analysis": handle_analysis,
    "numeric": handle_numeric,
}

# =============================================================================
# Analysis output formatting
# =============================================================================
#
# detect-pitch -> PitchResult.to_dict(): pitch, confidence, sample_rate,
#                 num_samples, buffer_size, actual_start_sample, threshold
# shift-ratio  -> dict with 'recorded', 'reference', 'ratio'


def format_analysis(cmd_name: str, data: dict, fmt: str) -> str:
    if fmt == "json":
        return json.dumps(data, indent=2)

    if fmt == "csv":
        return _format_csv(cmd_name, data)

    return _format_text(cmd_name, data)


def _format_text(cmd_name: str, data: dict) -> str:
    lines = []
    if cmd_name == "detect-pitch":
        if data["pitch"] > 0:
            midi = audiotune.frequency_to_midi(data["pitch"])
            note = audiotune.note_name(midi) if midi is not None else "?"
            lines.append(f"Pitch:        {data['pitch']:.2f} Hz ({note})")
        else:
            lines.append("Pitch:        not detected")
        lines.append(f"Confidence:   {data['confidence']:.4f}")
        lines.append(f"Start sample: {data['actual_start_sample']}")
        lines.append(f"Window:       {data['buffer_size']} samples")
        lines.append(f"Threshold:    {data['threshold']:.3f}")
    elif cmd_name == "shift-ratio":
        lines.append(f"Recorded:  {data['recorded']:.2f} Hz")
        lines.append(f"Reference: {data['reference']:.2f} Hz")
        lines.append(f"Ratio:     {data['ratio']:.6f}")
        lines.append(f"Semitones: {audiotune.ratio_to_semitones(data['ratio']):+.2f}")
    else:
        lines.append(str(data))
    return "\n".join(lines)


def _format_csv(cmd_name: str, data: dict) -> str:
    keys = list(data)
    return "\n".join([",".join(keys), ",".join(str(data[k]) for k in keys)])


# =============================================================================
# Utility command handlers
# =============================================================================


def handle_version() -> None:
    print(f"audiotune {audiotune.__version__}")


def handle_list(args: argparse.Namespace) -> None:
    grouped = _commands_by_category()
    # argparse restricts the category argument to known names
    selected = [args.category] if args.category else list(CATEGORIES)
    blocks = []
    for cat in selected:
        lines = [f"{cat}: {CATEGORIES[cat]}"]
        lines.extend(_command_rows(grouped[cat], "  "))
        blocks.append("\n".join(lines))
    print("\n\n".join(blocks))


def handle_info(args: argparse.Namespace) -> None:
    input_path = args.input
    _require_files(input_path)

    fmt, frames = audiotune.read_info(input_path)
    buf = audiotune.load_audio(input_path)
    peak_level, peak_pos = audiotune.peak(buf)

    print(f"File:        {input_path}")
    print(f"Format:      {fmt.name}")
    print(f"Duration:    {frames / fmt.sample_rate:.4f}s")
    print(f"Channels:    {fmt.channels}")
    print(f"Sample rate: {fmt.sample_rate} Hz")
    print(f"Frames:      {frames}")
    print(f"Peak level:  {peak_level:.6f} ({audiotune.gain_to_db(peak_level):.2f} dB)")
    print(f"Peak frame:  {peak_pos}")


# =============================================================================
# Main entry point
# =============================================================================


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return

    try:
        if args.command == "version":
            handle_version()
        elif args.command == "list":
            handle_list(args)
        elif args.command == "info":
            handle_info(args)
        else:
            spec = COMMANDS[args.command]
            HANDLERS[spec["input"]](args.command, spec, args)
    except (audiotune.AudioTuneError, ValueError) as exc:
        _fail(str(exc))


if __name__ == "__main__":
    main()
