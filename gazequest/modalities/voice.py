"""
gazequest/modalities/voice.py — Spoken command modality.

Transcripts arrive from the platform recogniser with a confidence. Matching
is an exact phrase lookup first, then the longest registered phrase that
occurs as whole words inside the transcript. A match below the command's
minimum confidence is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from gazequest.core.config import VoiceConfig
from gazequest.core.constants import ActionKind, Direction, Modality, Reliability
from gazequest.core.interfaces import Announcer
from gazequest.core.logger import get_logger
from gazequest.core.models import InputEvent, ModalityCapabilities
from gazequest.core.scheduler import Scheduler
from gazequest.modalities.base import BaseModality, EmitFn

_log = get_logger()


@dataclass(frozen=True)
class VoiceCommand:
    kind: ActionKind
    direction: Optional[Direction] = None
    command: Optional[str] = None
    min_confidence: Optional[float] = None


_DEFAULT_TABLE: list[tuple[tuple[str, ...], VoiceCommand]] = [
    (("select", "click", "activate", "choose", "pick"), VoiceCommand(ActionKind.SELECT)),
    (("up", "move up", "go up", "above"), VoiceCommand(ActionKind.MOVE, Direction.UP)),
    (("down", "move down", "go down", "below"), VoiceCommand(ActionKind.MOVE, Direction.DOWN)),
    (("left", "move left", "go left"), VoiceCommand(ActionKind.MOVE, Direction.LEFT)),
    (("right", "move right", "go right"), VoiceCommand(ActionKind.MOVE, Direction.RIGHT)),
    (("next", "tab"), VoiceCommand(ActionKind.NAVIGATE)),
    (("cancel", "back", "never mind"), VoiceCommand(ActionKind.CANCEL)),
    (("menu", "main menu", "home"), VoiceCommand(ActionKind.COMMAND, command="menu")),
    (("help", "assistance", "guide"), VoiceCommand(ActionKind.COMMAND, command="help")),
    (("pause", "stop", "wait"), VoiceCommand(ActionKind.COMMAND, command="pause")),
    (("start", "play", "begin", "go"), VoiceCommand(ActionKind.COMMAND, command="start")),
    (("high contrast",), VoiceCommand(ActionKind.COMMAND, command="toggle_contrast")),
    (("large text", "bigger text"), VoiceCommand(ActionKind.COMMAND, command="toggle_text_size")),
]


def normalize_transcript(text: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    cleaned = "".join(ch if ch.isalnum() or ch.isspace() else " " for ch in text.lower())
    return " ".join(cleaned.split())


class VoiceModality(BaseModality):
    """Command-table voice control."""

    modality = Modality.VOICE
    capabilities = ModalityCapabilities(
        actions=frozenset({
            ActionKind.SELECT, ActionKind.MOVE, ActionKind.COMMAND,
            ActionKind.CANCEL, ActionKind.NAVIGATE,
        }),
        reliability=Reliability.MEDIUM,
        requires_calibration=False,
    )
    activation_message = "Voice control activated. Say help to hear the available commands."

    def __init__(
        self,
        scheduler: Scheduler,
        emit: EmitFn,
        config: Optional[VoiceConfig] = None,
        announcer: Optional[Announcer] = None,
        available: bool = True,
    ) -> None:
        super().__init__(emit, scheduler, announcer, available)
        self._cfg = config or VoiceConfig()
        self._commands: dict[str, VoiceCommand] = {}
        for phrases, command in _DEFAULT_TABLE:
            self.register_command(phrases, command)
        self._last_speech_ms: Optional[float] = None

    @property
    def phrases(self) -> list[str]:
        return list(self._commands)

    def register_command(self, phrases: Iterable[str], command: VoiceCommand) -> None:
        """Map every phrase in *phrases* to *command* (later registrations win)."""
        for phrase in phrases:
            key = normalize_transcript(phrase)
            if key:
                self._commands[key] = command

    def match(self, transcript: str) -> Optional[tuple[str, VoiceCommand]]:
        """Resolve *transcript* to ``(phrase, command)``, or None."""
        text = normalize_transcript(transcript)
        if not text:
            return None
        if text in self._commands:
            return text, self._commands[text]
        padded = f" {text} "
        for phrase in sorted(self._commands, key=len, reverse=True):
            if f" {phrase} " in padded:
                return phrase, self._commands[phrase]
        return None

    def speech(self, transcript: str, confidence: float) -> bool:
        """
        Handle one recognised utterance.

        Returns:
            True if a command was emitted.
        """
        if not self.is_active:
            return False
        matched = self.match(transcript)
        if matched is None:
            _log.debug("voice", "unrecognized", {"transcript": transcript})
            return False
        phrase, command = matched
        threshold = command.min_confidence if command.min_confidence is not None else self._cfg.min_confidence
        if confidence < threshold:
            _log.debug("voice", "low_confidence", {
                "phrase": phrase,
                "confidence": round(confidence, 3),
                "threshold": threshold,
            })
            return False

        now = self.now_ms()
        response_ms = 0.0 if self._last_speech_ms is None else now - self._last_speech_ms
        self._last_speech_ms = now
        confidence = max(0.0, min(1.0, confidence))
        self.emit(InputEvent(
            kind=command.kind,
            modality=Modality.VOICE,
            accuracy=confidence,
            confidence=confidence,
            response_time_ms=response_ms,
            timestamp_ms=now,
            direction=command.direction,
            command=command.command,
            metadata={"phrase": phrase, "transcript": transcript},
        ))
        return True
