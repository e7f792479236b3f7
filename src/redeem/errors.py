"""Typed failures raised by the commitment engine and its collaborators.

Every error carries a stable ``code`` and the HTTP status the global error
handler maps it to.
"""


class CommitmentError(Exception):
    """Base class for all domain failures."""

    code = "commitment_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CommitmentError, ValueError):
    """Bad input shape or bounds."""

    code = "validation_error"
    status_code = 400


class NotFoundError(CommitmentError):
    """Commitment, proof, action or charity absent."""

    code = "not_found"
    status_code = 404


class AuthorizationError(CommitmentError):
    """Actor is not the owner or designated partner.

    The message is fixed so a non-owner cannot tell whether the
    commitment exists.
    """

    code = "forbidden"
    status_code = 403

    def __init__(self, message: str = "Not authorized for this commitment") -> None:
        super().__init__(message)


class ConflictError(CommitmentError):
    """Operation invalid for the current state, or lost a concurrent write."""

    code = "conflict"
    status_code = 409


class DependencyError(CommitmentError):
    """An external collaborator (payment gateway) failed."""

    code = "dependency_error"
    status_code = 502
