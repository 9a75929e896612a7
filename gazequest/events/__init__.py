"""events — Synchronous in-process InputEvent bus."""
