"""
Offline-first sync core for the caregiving activity tracker.

This package keeps user-entered mutations in a durable local queue until the
remote backend accepts them, and maintains local snapshots and checkpoints as
a safety net that does not depend on the remote backend.
"""
