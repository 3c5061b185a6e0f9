"""Error taxonomy shared by the workflow, template and signature layers."""


class WorkflowError(Exception):
    """Base class; `status_code` is what the HTTP layer answers with."""

    status_code = 400
    kind = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(WorkflowError):
    """Malformed or missing input."""

    status_code = 422
    kind = "validation_error"


class NotFoundError(WorkflowError):
    """Dangling reference."""

    status_code = 404
    kind = "not_found"


class UnauthorizedError(WorkflowError):
    """Actor lacks the role for the operation."""

    status_code = 403
    kind = "unauthorized"


class InvalidTransitionError(WorkflowError):
    """Edge not present in the status table."""

    status_code = 409
    kind = "invalid_transition"


class ConflictError(WorkflowError):
    """A concurrent write changed the row first."""

    status_code = 409
    kind = "conflict"


class ProviderError(WorkflowError):
    """Document renderer or signature provider failed."""

    status_code = 502
    kind = "provider_error"
