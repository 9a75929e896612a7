"""
gazequest/core/config.py — Typed configuration loader for GazeQuest input.

Loads config/gazequest.yaml and validates all values into typed dataclasses.
All downstream modules take these dataclasses; never read YAML directly.
Per-user settings (dwell time, scan speed) live in the settings store and
override these defaults at runtime.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from gazequest.core.constants import C
from gazequest.core.errors import ConfigError

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Dataclass hierarchy, mirrors gazequest.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class SignalConfig:
    """Conditioner windows and validity envelope."""

    smoothing_window: int = C.SMOOTHING_WINDOW
    breath_smoothing_window: int = C.BREATH_SMOOTHING_WINDOW
    max_sample_age_ms: float = C.MAX_SAMPLE_AGE_MS
    max_orientation_deg: float = C.MAX_ORIENTATION_DEG


@dataclass(frozen=True)
class GazeConfig:
    """Gaze surface geometry."""

    viewport_width: float = C.VIEWPORT_WIDTH
    viewport_height: float = C.VIEWPORT_HEIGHT
    dead_zone_px: float = C.GAZE_DEAD_ZONE_PX
    sanity_margin_px: float = C.CALIBRATION_SANITY_MARGIN_PX


@dataclass(frozen=True)
class CalibrationConfig:
    """Calibration protocol timings."""

    points: int = C.CALIBRATION_POINTS
    margin_px: float = C.CALIBRATION_MARGIN_PX
    samples_per_point: int = C.CALIBRATION_SAMPLES_PER_POINT
    sample_interval_ms: float = C.CALIBRATION_SAMPLE_INTERVAL_MS
    point_dwell_ms: float = C.CALIBRATION_POINT_DWELL_MS
    gap_ms: float = C.CALIBRATION_GAP_MS
    breath_settle_ms: float = C.BREATH_SETTLE_MS
    orientation_settle_ms: float = C.ORIENTATION_SETTLE_MS


@dataclass(frozen=True)
class DwellConfig:
    """Dwell acquisition timing."""

    dwell_time_ms: float = C.DWELL_TIME_MS


@dataclass(frozen=True)
class ScanningConfig:
    """Switch scanning behaviour."""

    interval_ms: float = C.SCAN_INTERVAL_MS
    auto_rescan: bool = False
    rescan_delay_ms: float = C.RESCAN_DELAY_MS
    direction_reversal: bool = True
    group_threshold: int = C.SCAN_GROUP_THRESHOLD
    long_press_ms: float = C.LONG_PRESS_MS


@dataclass(frozen=True)
class KeyboardConfig:
    """Keyboard auto-repeat."""

    repeat_delay_ms: float = 500.0
    repeat_interval_ms: float = 100.0


@dataclass(frozen=True)
class VoiceConfig:
    """Voice command matching."""

    min_confidence: float = 0.7
    language: str = "en-US"


@dataclass(frozen=True)
class OrientationConfig:
    """Tilt sensitivity preset: ``low``, ``medium`` or ``high``."""

    sensitivity: str = "medium"


@dataclass(frozen=True)
class BreathConfig:
    """Breath state thresholds on the baseline-relative level."""

    exhale_threshold: float = 0.7
    inhale_threshold: float = 0.3
    hold_tolerance: float = 0.1


@dataclass(frozen=True)
class AdaptiveConfig:
    """Recommendation engine thresholds."""

    min_history: int = C.MIN_HISTORY
    analysis_window: int = C.ANALYSIS_WINDOW
    adaptation_threshold: float = C.ADAPTATION_THRESHOLD
    confidence_threshold: float = C.CONFIDENCE_THRESHOLD
    max_per_session: int = C.MAX_RECOMMENDATIONS_PER_SESSION
    max_per_call: int = C.MAX_RECOMMENDATIONS_PER_CALL
    fatigue_threshold: float = C.FATIGUE_THRESHOLD


@dataclass(frozen=True)
class ControllerConfig:
    """Session orchestration."""

    primary_modality: str = "keyboard"
    enabled_modalities: tuple[str, ...] = ("keyboard", "switch", "gaze")
    update_interval_ms: float = C.ADAPTIVE_UPDATE_INTERVAL_MS
    switch_cooldown_ms: float = C.INPUT_SWITCH_COOLDOWN_MS
    max_history: int = C.MAX_INPUT_HISTORY
    announce_recommendations: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    log_dir: str = "logs"


@dataclass(frozen=True)
class GazeQuestConfig:
    """Root configuration object — single source of truth for all settings."""

    signal: SignalConfig = field(default_factory=SignalConfig)
    gaze: GazeConfig = field(default_factory=GazeConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)
    dwell: DwellConfig = field(default_factory=DwellConfig)
    scanning: ScanningConfig = field(default_factory=ScanningConfig)
    keyboard: KeyboardConfig = field(default_factory=KeyboardConfig)
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    orientation: OrientationConfig = field(default_factory=OrientationConfig)
    breath: BreathConfig = field(default_factory=BreathConfig)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def load_config(config_path: Path | str | None = None) -> GazeQuestConfig:
    """
    Load, validate, and return a GazeQuestConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. GAZEQUEST_CONFIG environment variable
    3. ``config/gazequest.yaml`` relative to the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to a ``gazequest.yaml`` file.

    Returns:
        A fully populated and frozen :class:`GazeQuestConfig` instance.

    Raises:
        ConfigError: If a YAML field has an invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = Path(config_path)
        if not resolved_path.exists():
            raise FileNotFoundError(f"Config file not found: {resolved_path}")
    elif "GAZEQUEST_CONFIG" in os.environ:
        resolved_path = Path(os.environ["GAZEQUEST_CONFIG"])
        if not resolved_path.exists():
            raise FileNotFoundError(
                f"GAZEQUEST_CONFIG points to missing file: {resolved_path}"
            )
    else:
        here = Path(__file__).resolve()
        for parent in [here.parent.parent.parent, here.parent.parent]:
            candidate = parent / "config" / "gazequest.yaml"
            if candidate.exists():
                resolved_path = candidate
                break

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file must be a YAML mapping, got: {type(loaded)}")
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    return config_from_dict(raw)


def config_from_dict(raw: dict) -> GazeQuestConfig:
    """
    Build a validated :class:`GazeQuestConfig` from a plain mapping.

    Missing sections and keys fall back to defaults.

    Raises:
        ConfigError: On unknown keys or out-of-range values.
    """
    try:
        ctrl_raw = dict(raw.get("controller") or {})
        if isinstance(ctrl_raw.get("enabled_modalities"), list):
            ctrl_raw["enabled_modalities"] = tuple(ctrl_raw["enabled_modalities"])

        config = GazeQuestConfig(
            signal=SignalConfig(**(raw.get("signal") or {})),
            gaze=GazeConfig(**(raw.get("gaze") or {})),
            calibration=CalibrationConfig(**(raw.get("calibration") or {})),
            dwell=DwellConfig(**(raw.get("dwell") or {})),
            scanning=ScanningConfig(**(raw.get("scanning") or {})),
            keyboard=KeyboardConfig(**(raw.get("keyboard") or {})),
            voice=VoiceConfig(**(raw.get("voice") or {})),
            orientation=OrientationConfig(**(raw.get("orientation") or {})),
            breath=BreathConfig(**(raw.get("breath") or {})),
            adaptive=AdaptiveConfig(**(raw.get("adaptive") or {})),
            controller=ControllerConfig(**ctrl_raw),
            logging=LoggingConfig(**(raw.get("logging") or {})),
        )
    except TypeError as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    _validate_config(config)
    logger.debug("Config loaded: %s", config)
    return config


_MODALITY_NAMES = {"gaze", "switch", "keyboard", "orientation", "breath", "voice"}


def _validate_config(cfg: GazeQuestConfig) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ConfigError: If any configured value violates a hard constraint.
    """
    if cfg.signal.smoothing_window < 1 or cfg.signal.breath_smoothing_window < 1:
        raise ConfigError("signal smoothing windows must be ≥ 1")
    if cfg.signal.max_sample_age_ms <= 0:
        raise ConfigError(
            f"signal.max_sample_age_ms must be positive, got {cfg.signal.max_sample_age_ms}"
        )
    if cfg.gaze.viewport_width <= 0 or cfg.gaze.viewport_height <= 0:
        raise ConfigError("gaze viewport dimensions must be positive")
    if cfg.calibration.gap_ms < 500:
        raise ConfigError(
            f"calibration.gap_ms must be ≥ 500ms, got {cfg.calibration.gap_ms}"
        )
    if cfg.calibration.points not in (5, 9):
        raise ConfigError(
            f"calibration.points must be 5 or 9, got {cfg.calibration.points}"
        )
    if cfg.dwell.dwell_time_ms <= 0:
        raise ConfigError(f"dwell.dwell_time_ms must be positive, got {cfg.dwell.dwell_time_ms}")
    if not (C.SCAN_INTERVAL_MIN_MS <= cfg.scanning.interval_ms <= C.SCAN_INTERVAL_MAX_MS):
        raise ConfigError(
            f"scanning.interval_ms must be in [{C.SCAN_INTERVAL_MIN_MS:.0f}, "
            f"{C.SCAN_INTERVAL_MAX_MS:.0f}], got {cfg.scanning.interval_ms}"
        )
    if not (0.0 <= cfg.voice.min_confidence <= 1.0):
        raise ConfigError(f"voice.min_confidence must be in [0, 1], got {cfg.voice.min_confidence}")
    if cfg.orientation.sensitivity not in {"low", "medium", "high"}:
        raise ConfigError(
            f"orientation.sensitivity must be 'low', 'medium', or 'high', "
            f"got '{cfg.orientation.sensitivity}'"
        )
    if not (0.0 < cfg.breath.inhale_threshold < cfg.breath.exhale_threshold < 1.0):
        raise ConfigError("breath thresholds must satisfy 0 < inhale < exhale < 1")
    if not (0.0 <= cfg.adaptive.confidence_threshold <= 1.0):
        raise ConfigError(
            f"adaptive.confidence_threshold must be in [0, 1], got {cfg.adaptive.confidence_threshold}"
        )
    if cfg.adaptive.min_history < 1:
        raise ConfigError("adaptive.min_history must be ≥ 1")
    if cfg.controller.primary_modality not in _MODALITY_NAMES:
        raise ConfigError(f"Unknown controller.primary_modality: {cfg.controller.primary_modality}")
    unknown = set(cfg.controller.enabled_modalities) - _MODALITY_NAMES
    if unknown:
        raise ConfigError(f"Unknown modalities in controller.enabled_modalities: {sorted(unknown)}")
    if cfg.logging.level not in {"DEBUG", "INFO", "WARN", "ERROR"}:
        raise ConfigError(f"logging.level must be DEBUG/INFO/WARN/ERROR, got {cfg.logging.level}")
