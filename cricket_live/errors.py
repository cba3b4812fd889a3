# cricket_live/errors.py
from __future__ import annotations


class ScoringError(Exception):
    """Base class for every failure the scoring engine reports to its caller."""

    status_code = 500
    kind = "ScoringError"


# -----------------------
# NotFound
# -----------------------
class NotFound(ScoringError):
    """Match, innings, team or player absent from the store."""

    status_code = 404
    kind = "NotFound"


class MatchNotFound(NotFound):
    pass


class InningsNotFound(NotFound):
    pass


class TeamNotFound(NotFound):
    pass


class PlayerNotFound(NotFound):
    pass


# -----------------------
# InvalidState
# -----------------------
class InvalidState(ScoringError):
    """Operation illegal for the current match/innings status."""

    status_code = 409
    kind = "InvalidState"


class InvalidTransition(InvalidState):
    """Innings already exists or is requested out of sequence."""
    pass


class InningsNotActive(InvalidState):
    pass


class OverFull(InvalidState):
    """A seventh legal delivery was offered to an over."""
    pass


class OversLimitReached(InvalidState):
    pass


class AllOut(InvalidState):
    pass


# -----------------------
# ValidationError
# -----------------------
class ValidationError(ScoringError):
    """Malformed ball or toss data."""

    status_code = 400
    kind = "ValidationError"


class MissingDismissalInfo(ValidationError):
    pass


class InvalidExtraCombination(ValidationError):
    pass


class NegativeRuns(ValidationError):
    pass


class IllegalBowlerChange(ValidationError):
    pass


class UnknownTeam(ValidationError):
    """Team id is not one of the two sides of the match."""
    pass


# -----------------------
# Store / collaborators
# -----------------------
class ConcurrencyConflict(ScoringError):
    """The ball transaction lost a race; retry the whole operation."""

    status_code = 409
    kind = "ConcurrencyConflict"


class DependencyUnavailable(ScoringError):
    """Cache or fan-out unreachable. Logged by the write path, never raised out of it."""

    status_code = 503
    kind = "DependencyUnavailable"
