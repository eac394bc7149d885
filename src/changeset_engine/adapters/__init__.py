"""Adapters — concrete collaborators of the change-set engine.

Contains:
- path_utils.py    — posix normalization and root containment helpers
- zones.py         — ZoneManager, zone layout and edit guards
- snapshots.py     — SnapshotEngine (capture, diff, restore)
- instructions.py  — INSTRUCTIONS.md lookup and policy evaluation
- git.py           — GitHelper (HEAD, diff, numstat)
- validations.py   — ValidationRunner (shell commands with timeouts)
- state_store.py   — JsonStateStore (durable JSON state)
- notifier.py      — control plane notifiers
"""

__all__: list[str] = []
