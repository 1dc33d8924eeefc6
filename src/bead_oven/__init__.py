"""Beads orchestrator that runs a coding agent until the issue queue is done."""

__version__ = "0.1.0"
