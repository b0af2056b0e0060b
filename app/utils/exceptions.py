class BackendError(Exception):
    """A backend call failed (network, database or broker)."""

    def __init__(self, detail: str = "Backend request failed"):
        super().__init__(detail)
        self.detail = detail


class AuthorizationDenied(BackendError):
    """Row-level policy rejected the read or write for the current actor."""

    def __init__(self, detail: str = "Not allowed to perform this action"):
        super().__init__(detail)


class NotFound(BackendError):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail)


class ConflictError(BackendError):
    """A conditional write matched no row (already done, or a unique key exists)."""

    def __init__(self, detail: str = "Resource state changed"):
        super().__init__(detail)


class BackendTimeout(BackendError):
    def __init__(self, detail: str = "Backend request timed out"):
        super().__init__(detail)


class SubscriptionError(BackendError):
    def __init__(self, detail: str = "Change feed subscription failed"):
        super().__init__(detail)


class InvalidInput(ValueError):
    """Client-side validation failure. Raised before any backend call."""
