"""Issue orchestrator that drives a coding agent through tracker issues.

One issue at a time is claimed from the tracker, handed to the agent, put
through optional reviews and the quality gates, committed and closed. Every
external tool (tracker, agent, VCS, gates) is a child process tracked by a
single ``ProcessManager`` so that an interrupt leaves no orphans behind.
"""
