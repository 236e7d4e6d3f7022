from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .audio_engine import GraphContext, build_graph
from .errors import MasteringError
from .metrics_logger import RenderMetricsLogger
from .session import MasteringSession
from .system_utils import ConfigManager, StabilityChecks

LOG = logging.getLogger("mastering_engine")


def _setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure console + optional file logging."""
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(message)s",
        handlers=handlers,
        force=True,
    )


def _parse_assignments(pairs: list[str]) -> dict[str, float]:
    changes: dict[str, float] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"Expected key=value, got {pair!r}")
        changes[key.strip()] = float(value)
    return changes


def run_self_test(config_manager: ConfigManager) -> bool:
    config = config_manager.load_config()
    stereo = StabilityChecks.generate_example(sr=44100, seconds=2.0)
    ok = True
    for name in config_manager.list_presets():
        settings = config_manager.preset_settings(name)
        graph = build_graph(settings, 44100, GraphContext.OFFLINE, config=config)
        result = StabilityChecks.assert_stable(graph.render(stereo))
        print(f"[{'OK' if result.ok else 'FAIL'}] {name}: {result.message}")
        ok = ok and result.ok
    return ok


def build_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mastering engine: analyse, audition and render a stereo track.")
    parser.add_argument("--in", dest="inp", help="Input audio path (wav/flac/mp3).")
    parser.add_argument("--out", dest="out", help="Output audio path (16-bit wav).")
    parser.add_argument("--preset", default=None, help="Preset name applied after auto gain staging.")
    parser.add_argument(
        "--set",
        dest="assignments",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Override one setting, e.g. --set stereo_width=120 (repeatable).",
    )
    parser.add_argument("--analyze-only", action="store_true", help="Print the analysis and exit.")
    parser.add_argument("--play", action="store_true", help="Audition through the default output device.")
    parser.add_argument("--metrics-log", default=None, help="Append render metrics to this JSON file.")
    parser.add_argument("--config", default=None, help="Engine config JSON overrides.")
    parser.add_argument("--presets", default=None, help="Extra presets JSON.")
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING, ERROR.")
    parser.add_argument("--log-file", default=None, help="Optional log file path.")
    parser.add_argument("--self-test", action="store_true", help="Render synthetic audio through every preset.")
    return parser


def _audition(session: MasteringSession) -> None:
    from .playback import DeviceOutput

    with DeviceOutput(session):
        session.play()
        try:
            while session.is_playing:
                time.sleep(session.config.meter_interval)
                reading = session.poll_meter()
                LOG.debug("Meter RMS %.1f dB | Peak %.1f dB", reading.rms_db, reading.peak_db)
        except KeyboardInterrupt:
            LOG.info("Playback interrupted")
        finally:
            session.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_cli().parse_args(argv)
    _setup_logging(args.log_level, args.log_file)
    config_manager = ConfigManager(config_path=args.config, presets_path=args.presets)

    if args.self_test:
        return 0 if run_self_test(config_manager) else 1
    if not args.inp:
        raise SystemExit("--in is required (or use --self-test)")

    session = MasteringSession(config=config_manager.load_config(), presets=config_manager.load_presets())
    try:
        analysis = session.load_file(args.inp)
        stats = analysis.stats
        print(
            f"RMS: {stats.rms:.2f} dB | Peak: {stats.peak:.2f} dB | Crest: {stats.crest_factor:.2f} dB | "
            f"Corr: {stats.stereo_correlation:.2f} | Score: {analysis.score}"
        )
        print(f"Tempo: {analysis.bpm} BPM | Key: {analysis.key}")
        if args.analyze_only:
            return 0

        if args.preset:
            session.apply_preset(args.preset)
        if args.assignments:
            session.update_settings(**_parse_assignments(args.assignments))
        LOG.info("Settings: %s", session.settings.to_dict())

        if args.play:
            _audition(session)

        if args.out:
            result = session.export(args.out)
            print(f"Exported: {result.path}")
            if args.metrics_log:
                RenderMetricsLogger(args.metrics_log).analyze(
                    result.samples,
                    result.sample_rate,
                    name=Path(args.out).stem,
                    analysis=analysis,
                    settings=session.settings,
                )
    except (MasteringError, ValueError) as e:
        LOG.error("%s", e)
        return 2
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
