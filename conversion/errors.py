"""
Conversion error taxonomy.

Every error carries the HTTP status the API layer answers with, so route
handlers can let them propagate to the application's exception handlers.
"""


class ConversionError(Exception):
    """Base class for fiat conversion failures."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RateUnavailable(ConversionError):
    status_code = 503


class UnsupportedAsset(ConversionError):
    status_code = 400

    def __init__(self, symbol: str):
        super().__init__(f"Exchange rate not available for {symbol}")
        self.symbol = symbol


class UnsupportedCurrency(ConversionError):
    status_code = 400

    def __init__(self, code: str):
        super().__init__(f"Exchange rate not available for {code}")
        self.code = code


class ValidationError(ConversionError):
    """Settings payload violates one or more field rules."""

    status_code = 400

    def __init__(self, errors: list[dict[str, str]]):
        fields = ", ".join(e["field"] for e in errors)
        super().__init__(f"Invalid conversion settings: {fields}")
        self.errors = errors


class Unauthorized(ConversionError):
    status_code = 403


class NotFound(ConversionError):
    status_code = 404


class ConversionNotAllowed(ConversionError):
    status_code = 400


class InvalidStatusTransition(ConversionError):
    status_code = 409

    def __init__(self, conversion_id: str, current, target):
        super().__init__(
            f"Conversion {conversion_id} cannot move from "
            f"{getattr(current, 'value', current)} to {getattr(target, 'value', target)}"
        )
        self.current = current
        self.target = target


class ConversionDeclined(ConversionError):
    """Payout provider declined. Recorded on the transaction, not raised by the orchestrator."""

    status_code = 402


class ExecutionError(ConversionError):
    """Unexpected fault while executing a conversion. Always re-raised."""

    status_code = 502

    def __init__(self, conversion_id: str, message: str):
        super().__init__(message)
        self.conversion_id = conversion_id


class PayoutTimeout(ExecutionError):
    status_code = 504
