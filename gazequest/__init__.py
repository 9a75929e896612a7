"""
GazeQuest — accessible multi-modal input core.

Noisy sensor streams (gaze, tilt, switch, keyboard, breath, voice) → one
normalised InputEvent vocabulary → performance tracking → adaptive
recommendations. Designed for players with motor impairments.
"""

__version__ = "1.0.0"
__author__ = "GazeQuest Team"
