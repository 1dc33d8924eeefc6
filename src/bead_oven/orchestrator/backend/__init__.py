"""Adapters for the tracker, agent and version control CLIs."""

from bead_oven.orchestrator.backend.base import (
    AgentBackend,
    TrackerBackend,
    TrackerError,
    VcsBackend,
    VcsError,
)
from bead_oven.orchestrator.backend.beads import BeadsTracker
from bead_oven.orchestrator.backend.claude_agent import ClaudeAgent
from bead_oven.orchestrator.backend.vcs import GitVcs, JjVcs, build_vcs

__all__ = [
    "AgentBackend",
    "BeadsTracker",
    "ClaudeAgent",
    "GitVcs",
    "JjVcs",
    "TrackerBackend",
    "TrackerError",
    "VcsBackend",
    "VcsError",
    "build_vcs",
]
