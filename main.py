"""
main.py — GazeQuest input core demo entry point.

Parses CLI args, loads configuration, builds an InputController over a small
three-target board and plays one scripted demo through it. Demos run on a
virtual clock by default; ``--realtime`` drives the same session from an
asyncio event loop.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import traceback

# ──────────────────────────────────────────────────────────────
# ASCII banner
# ──────────────────────────────────────────────────────────────

_BANNER = r"""
   ____               ___                  _
  / ___| __ _ _______/ _ \ _   _  ___  ___| |_
 | |  _ / _` |_  / _ \ | | | | | |/ _ \/ __| __|
 | |_| | (_| |/ /  __/ |_| | |_| |  __/\__ \ |_
  \____|\__,_/___\___|\__\_\\__,_|\___||___/\__|

        GazeQuest accessible input core  v1.0
"""

_DEMO_DURATION_MS = {
    "calibrate": 45_000.0,
    "dwell": 12_000.0,
    "scan": 12_000.0,
    "tilt": 5_000.0,
    "breath": 9_000.0,
    "adaptive": 20_000.0,
}


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="gazequest",
        description="GazeQuest — multimodal accessible input demos",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument(
        "--demo",
        choices=sorted(_DEMO_DURATION_MS),
        default="dwell",
        help="Scripted demo to run",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to gazequest.yaml (defaults to GAZEQUEST_CONFIG or config/gazequest.yaml)",
    )
    p.add_argument(
        "--realtime",
        action="store_true",
        help="Run on the asyncio event loop instead of a virtual clock",
    )
    p.add_argument(
        "--jitter",
        type=float,
        default=4.0,
        help="Gaussian noise (pixels / degrees) added to simulated sensors",
    )
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default="INFO",
        help="Minimum log level for stderr output",
    )
    return p


# ──────────────────────────────────────────────────────────────
# Demo board
# ──────────────────────────────────────────────────────────────

def _build_board():
    from gazequest.core.interfaces import StaticTargetEnvironment
    from gazequest.core.models import TargetRef

    env = StaticTargetEnvironment()
    env.add(TargetRef("start", "Start"), (140.0, 200.0, 200.0, 200.0))
    env.add(TargetRef("map", "Map"), (540.0, 200.0, 200.0, 200.0))
    env.add(TargetRef("quit", "Quit"), (940.0, 200.0, 200.0, 200.0))
    return env


class _PrintAnnouncer:
    """Announcer that echoes to stdout."""

    def announce(self, message: str, priority: str = "polite") -> None:
        marker = "!" if priority == "assertive" else ">"
        print(f"  {marker} {message}")


# ──────────────────────────────────────────────────────────────
# Demo scripts
# ──────────────────────────────────────────────────────────────

def _setup_demo(name: str, controller, jitter: float) -> list:
    """Wire simulators / scheduled inputs for *name*; returns started sensors."""
    from gazequest.core.constants import Modality
    from gazequest.input.simulator import SimulatedSensor, SimulationMode, follow_calibration

    sched = controller.scheduler
    sensors = []

    if name == "calibrate":
        gaze = SimulatedSensor(
            Modality.GAZE, sched, controller.push_raw_sample,
            mode=SimulationMode.INTERACTIVE, jitter=jitter, seed=7,
        )
        follow_calibration(gaze, controller.calibration)
        controller.start_calibration(Modality.GAZE)
        sensors.append(gaze)

    elif name == "dwell":
        sensors.append(SimulatedSensor(
            Modality.GAZE, sched, controller.push_raw_sample, jitter=jitter, seed=7,
        ))

    elif name == "scan":
        controller.set_primary(Modality.SWITCH, force=True)
        # Press at start, then when the third target is highlighted.
        sched.call_later(100.0, controller.press_switch)
        sched.call_later(150.0, controller.release_switch)
        sched.call_later(2_200.0, controller.press_switch)
        sched.call_later(2_250.0, controller.release_switch)

    elif name == "tilt":
        controller.activate_modality(Modality.ORIENTATION)
        sensors.append(SimulatedSensor(
            Modality.ORIENTATION, sched, controller.push_raw_sample, jitter=jitter / 4, seed=7,
        ))

    elif name == "breath":
        controller.activate_modality(Modality.BREATH)
        breath = SimulatedSensor(Modality.BREATH, sched, controller.push_raw_sample, seed=7)
        sched.call_later(50.0, lambda: controller.start_calibration(Modality.BREATH))
        sensors.append(breath)

    elif name == "adaptive":
        # Noisy uncalibrated gaze, with keyboard presses mixed in.
        controller.set_primary(Modality.GAZE, force=True)
        sensors.append(SimulatedSensor(
            Modality.GAZE, sched, controller.push_raw_sample,
            mode=SimulationMode.RANDOM, jitter=jitter * 4, seed=11,
        ))
        for i in range(12):
            t = 400.0 + i * 900.0
            sched.call_later(t, lambda: controller.key_down("Enter"))
            sched.call_later(t + 80.0, lambda: controller.key_up("Enter"))

    for sensor in sensors:
        sensor.start()
    return sensors


def _print_event(event) -> None:
    parts = [event.modality.value, event.kind.value]
    if event.target is not None:
        parts.append(str(event.target))
    if event.direction is not None:
        parts.append(event.direction.value)
    if event.command:
        parts.append(event.command)
    print(f"  [event] {' '.join(parts)}  acc={event.accuracy:.2f} conf={event.confidence:.2f}")


def _print_recommendation(rec) -> None:
    print(f"  [recommendation] {rec.kind.value} conf={rec.confidence:.2f} {rec.reason}")


# ──────────────────────────────────────────────────────────────
# Runners
# ──────────────────────────────────────────────────────────────

def _build_controller(args: argparse.Namespace, scheduler):
    from gazequest.core.config import load_config
    from gazequest.core.interfaces import InMemorySettingsStore
    from gazequest.pipeline.controller import InputController

    cfg = load_config(args.config)
    controller = InputController(
        _build_board(),
        cfg,
        scheduler,
        settings=InMemorySettingsStore(),
        announcer=_PrintAnnouncer(),
    )
    controller.subscribe(_print_event)
    controller.on_recommendation(_print_recommendation)
    return controller


def _run_virtual(args: argparse.Namespace) -> int:
    from gazequest.core.scheduler import ManualScheduler

    sched = ManualScheduler()
    controller = _build_controller(args, sched)
    controller.start()
    sensors = _setup_demo(args.demo, controller, args.jitter)
    try:
        sched.advance(_DEMO_DURATION_MS[args.demo])
    finally:
        for s in sensors:
            s.stop()
        controller.shutdown()
    _print_summary(controller)
    return 0


async def _run_realtime_async(args: argparse.Namespace) -> int:
    from gazequest.core.scheduler import AsyncioScheduler

    sched = AsyncioScheduler(asyncio.get_running_loop())
    controller = _build_controller(args, sched)
    controller.start()
    sensors = _setup_demo(args.demo, controller, args.jitter)
    try:
        await asyncio.sleep(_DEMO_DURATION_MS[args.demo] / 1000.0)
    finally:
        for s in sensors:
            s.stop()
        controller.shutdown()
    _print_summary(controller)
    return 0


def _print_summary(controller) -> None:
    print("\n  Performance summary")
    for rec in controller.tracker.records():
        print(
            f"    {rec.modality.value:<12} n={rec.count:<4} "
            f"acc={rec.mean_accuracy:.2f} rt={rec.mean_response_time_ms:.0f}ms "
            f"success={rec.success_rate:.2f}"
        )


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main() -> int:
    """Application entry point. Returns process exit code."""
    print(_BANNER)

    parser = _build_parser()
    args = parser.parse_args()

    from gazequest.core.logger import get_logger, set_stderr_level
    set_stderr_level(args.log_level)
    log = get_logger()
    log.info("main", "args_parsed", {
        "demo": args.demo,
        "realtime": args.realtime,
        "config": args.config,
    })

    exit_code = 0
    try:
        if args.realtime:
            exit_code = asyncio.run(_run_realtime_async(args))
        else:
            exit_code = _run_virtual(args)
    except KeyboardInterrupt:
        print("\n[INFO] Interrupted — shutting down…")
    except Exception:                              # noqa: BLE001
        tb = traceback.format_exc()
        print(tb, file=sys.stderr)
        log.critical("main", "unhandled_exception", {"traceback": tb})
        exit_code = 1
    finally:
        log.flush()

    print(f"[INFO] GazeQuest demo exited with code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
