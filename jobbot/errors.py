"""Exception taxonomy for the apply engine."""
from __future__ import annotations


class JobbotError(Exception):
    """Base class for all jobbot errors."""


class SetupRequired(JobbotError):
    """A prerequisite (AI backend, profile, browser) is missing."""


class SessionError(JobbotError):
    """The browser session could not be obtained."""


class NavigationError(JobbotError):
    """An expected control (Easy Apply, dialog, Next/Submit) was not found."""


class ApplicationTimeout(JobbotError):
    """The per-application deadline expired."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        super().__init__(f"Application process timed out after {seconds:g} seconds.")


class CheckpointDetected(JobbotError):
    """LinkedIn interrupted navigation with a verification page.

    Not a generic failure: the scheduler pauses itself and asks for manual
    intervention when this is raised.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"LinkedIn checkpoint detected at {url}. Manual intervention required.")


class InvalidTransition(JobbotError):
    """An application record was asked to move backwards in its lifecycle."""

    def __init__(self, job_id: str, current: str, requested: str) -> None:
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id}: cannot move {current} -> {requested}")
