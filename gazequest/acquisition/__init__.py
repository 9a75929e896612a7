"""
acquisition — Target acquisition state machines.

Dwell (hold-to-activate) for pointer modalities and scanning
(press-to-select) for switch modalities.
"""
