"""Runtime module for child process launching and supervision.

This module provides the worker that spawns and reaps a child process,
the monitor that turns a stop request into signals, and the process-wide
launch serializer guarding spawn setup.
"""

from __future__ import annotations

from .launcher import LaunchSerializer, get_launch_serializer
from .monitor import STOP_SIGNALS, Monitor
from .worker import ProcessSpec, Worker, parse_command

__all__ = [
    "LaunchSerializer",
    "Monitor",
    "ProcessSpec",
    "STOP_SIGNALS",
    "Worker",
    "get_launch_serializer",
    "parse_command",
]
