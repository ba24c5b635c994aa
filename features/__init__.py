"""
Features — self-contained building blocks used by the pipeline runner.

  checkpoints/   per-project resumable state (store.py)
  beads/         per-step execution history, optionally mirrored to Postgres
"""
