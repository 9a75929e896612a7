"""
adaptive — Performance tracking and adaptive recommendations.

Per-modality statistics feed a rule engine that suggests a better method,
different timing, recalibration or a break.
"""
