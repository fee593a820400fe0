"""
Error taxonomy shared by all services. Concrete errors are defined next to
the service that raises them and subclass one of these.
"""


class StudyhubError(Exception):
    pass


class ValidationError(StudyhubError):
    """
    Input has the wrong shape: blank or oversized names, self-relationships.
    """


class ConflictError(StudyhubError):
    """
    The operation would duplicate an existing record.
    """


class PermissionDenied(StudyhubError):
    """
    The actor lacks the required role, or the target is protected.
    """


class NotFoundError(StudyhubError):
    pass


class InvalidStateTransition(StudyhubError):
    """
    The record is in a terminal or superseded state.
    """


class StorageError(StudyhubError):
    """
    The backing store failed. The transaction has been rolled back.
    """
