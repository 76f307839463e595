"""Errors raised synchronously by the run controller."""

from __future__ import annotations


class RunnerError(Exception):
    """Base exception for run controller failures."""


class ValidationError(RunnerError):
    """The start request is malformed."""


class DependencyMissing(RunnerError):
    """The recognition engine or model file does not exist."""


class RunnerBusyError(RunnerError):
    """A run is already in progress."""


class NotRunningError(RunnerError):
    """The operation needs an active run."""


class LaunchError(RunnerError):
    """The executor could not be located or started."""
