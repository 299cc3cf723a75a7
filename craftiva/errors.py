"""Error taxonomy shared by the lifecycle and policy engines.

Every lifecycle operation is all-or-nothing: when one of these is raised,
no row has been changed.
"""


class MarketplaceError(Exception):
    """Base exception for marketplace operations."""

    pass


class ValidationError(MarketplaceError, ValueError):
    """Malformed or out-of-range input."""

    pass


class InvalidProgressError(ValidationError):
    """Progress value outside [0, 100] or not an integer."""

    pass


class AuthorizationError(MarketplaceError):
    """The access policy denied the operation."""

    pass


class WrongActorError(AuthorizationError):
    """The actor has no right to perform this particular mutation."""

    pass


class StateConflictError(MarketplaceError):
    """A precondition on the current status failed."""

    pass


class JobNotOpenError(StateConflictError):
    """The job request is no longer open."""

    pass


class WrongStateError(StateConflictError):
    """The row is not in a status that permits the operation."""

    pass


class DuplicateApplicationError(MarketplaceError):
    """The apprentice already applied to this job request."""

    pass


class NotFoundError(MarketplaceError):
    """A referenced row or actor does not exist."""

    pass


class JobNotFoundError(NotFoundError):
    pass


class ApplicationNotFoundError(NotFoundError):
    pass


class ProfileNotFoundError(NotFoundError):
    pass
