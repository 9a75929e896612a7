"""gazequest.core — constants, config, logging, scheduling and the data model."""
