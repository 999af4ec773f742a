"""Build history persistence exceptions."""


class PersistenceError(Exception):
    """Base exception for build history errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """The history database could not be initialised or is not initialised yet."""

    pass


class RecordNotFoundError(PersistenceError):
    """A build that must exist (e.g. when finishing it) is missing."""

    pass


class DataIntegrityError(PersistenceError):
    """A constraint was violated, e.g. a build number allocated twice."""

    pass
