"""Orchestration errors surfaced to the HTTP layer."""


class RunNotFoundError(LookupError):
    """No run with the given id."""


class RunNotRunningError(Exception):
    """Run is already in a terminal state."""


class InvalidWorkListError(ValueError):
    """Requested models/stages do not form a valid work list."""


class RunAlreadyRunningError(Exception):
    """Brand already has a running analysis."""

    def __init__(self, brand_id, run=None):
        self.brand_id = brand_id
        self.run = run
        super().__init__(f"Analysis is already running for brand {brand_id}")
