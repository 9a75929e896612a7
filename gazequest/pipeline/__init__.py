"""
pipeline — Session orchestration.

The InputController wires conditioner, calibration, acquisition machines,
event bus, tracker and recommendation engine for one play session.
"""
