"""
calibration — Multi-point and single-point calibration protocols.

Produces per-modality CalibrationProfiles that gate ``select`` events for
gaze and breath and provide the zero reference for tilt.
"""
