"""
input — Raw sensor sample conditioning and scripted sensor simulation.

Validates and smooths gaze, tilt and breath readings before they reach
calibration or target acquisition.
"""
