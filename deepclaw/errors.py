"""DeepClaw error taxonomy. Each error carries the HTTP status it maps to."""


class DeepClawError(Exception):
    """Base exception for DeepClaw service errors."""

    status_code = 400

    def __init__(self, message: str, error_type: str = "deepclaw_error"):
        self.message = message
        self.error_type = error_type
        super().__init__(message)


class ValidationError(DeepClawError):
    """Bad input shape or range."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


class InvalidStateError(DeepClawError):
    """Operation not allowed in the entity's current state."""

    def __init__(self, message: str):
        super().__init__(message, "invalid_state")


class LimitExceededError(DeepClawError):
    def __init__(self, message: str, limit: int):
        super().__init__(message, "limit_exceeded")
        self.limit = limit


class InsufficientKarmaError(DeepClawError):
    """Raised when an agent doesn't have enough karma."""

    def __init__(self, required: int, actual: int):
        super().__init__(
            f"Insufficient karma: required {required}, have {actual}",
            "insufficient_karma",
        )
        self.required = required
        self.actual = actual


class AlreadyModeratorError(DeepClawError):
    def __init__(self, agent_name: str, subclaw_name: str):
        super().__init__(
            f"{agent_name} is already a moderator of c/{subclaw_name}",
            "already_moderator",
        )


class UnauthorizedError(DeepClawError):
    status_code = 401

    def __init__(self, message: str = "API key required"):
        super().__init__(message, "unauthorized")


class ForbiddenError(DeepClawError):
    status_code = 403

    def __init__(self, message: str):
        super().__init__(message, "forbidden")


class NotFoundError(DeepClawError):
    status_code = 404

    def __init__(self, entity: str, identifier: str = ""):
        message = f"{entity} not found" if not identifier else f"{entity} '{identifier}' not found"
        super().__init__(message, "not_found")
        self.entity = entity
        self.identifier = identifier


class ConflictError(DeepClawError):
    """Uniqueness violation."""

    status_code = 409

    def __init__(self, message: str):
        super().__init__(message, "conflict")
