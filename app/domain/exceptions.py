from app.core.utils.serialization import normalize_ctx


class AppError(Exception):
    def __init__(self, message: str = "", *, ctx: dict | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.ctx = normalize_ctx(ctx or {})


class NotFound(AppError):
    pass
class Unauthorized(AppError):
    pass
class Forbidden(AppError):
    pass
class Conflict(AppError):
    pass
class InvalidInput(AppError):
    pass
class Unprocessable(AppError):
    pass


class CapacityExceeded(Conflict):
    """Reservation rejected; nothing was mutated."""


class TicketTypeInUse(Conflict):
    pass


class RefundNotEligible(Conflict):
    pass


class GatewayError(AppError):
    """The payment gateway failed or was unreachable. Safe to retry with the same idempotency key."""

    def __init__(self, message: str = "", *, ctx: dict | None = None, retryable: bool = True) -> None:
        super().__init__(message, ctx=ctx)
        self.retryable = retryable
