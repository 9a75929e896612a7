"""
modalities — Device adapters, one per input channel.

Each adapter exposes the same capability set (availability, init,
activate, deactivate) and emits normalised InputEvents.
"""
