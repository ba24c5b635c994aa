"""
Beads — per-step execution history of pipeline runs.

    from features.beads import BeadTracker, Bead, BeadStatus, BeadOutcome
    from features.beads import db as bead_db
"""

from features.beads.models import Bead, BeadOutcome, BeadStatus
from features.beads.tracker import BeadTracker

__all__ = ["Bead", "BeadOutcome", "BeadStatus", "BeadTracker"]
