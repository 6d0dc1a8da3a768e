"""Daemon service for running scheduled jobs."""

from cronstack.daemon.service import CronstackDaemon, run_daemon

__all__ = ["CronstackDaemon", "run_daemon"]
