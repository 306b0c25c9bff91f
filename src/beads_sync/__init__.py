"""beads-sync: offline-first sync for issue records stored in a GitHub repository."""

__version__ = "0.1.0"
