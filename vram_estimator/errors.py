"""Shared exception types for the estimator.

Every error raised for a bad request derives from ``EstimationError`` so the
request boundary can turn it into a structured response without catching
unrelated failures.
"""


class EstimationError(Exception):
    """Base class for errors caused by an invalid estimation request."""

    error_type = "EstimationError"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        self.message = message
        self.details = list(details or [])
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"type": self.error_type, "message": self.message, "details": self.details}


class InvalidPrecision(EstimationError):
    """Raised for a precision tag outside the supported enumeration."""

    error_type = "InvalidPrecision"

    def __init__(self, tag: object) -> None:
        self.tag = tag
        super().__init__(f"Unknown precision '{tag}'")


class InvalidQuantization(EstimationError):
    """Raised for a quantization tag outside the supported enumeration."""

    error_type = "InvalidQuantization"

    def __init__(self, tag: object) -> None:
        self.tag = tag
        super().__init__(f"Unknown quantization '{tag}'")


class InvalidConfiguration(EstimationError):
    """Raised for missing fields, out-of-range values or unknown identifiers.

    *details* carries one human-readable line per offending field.
    """

    error_type = "InvalidConfiguration"


class UnsupportedModelType(EstimationError):
    """Raised when a calculation mode or advanced model type is not known."""

    error_type = "UnsupportedModelType"

    def __init__(self, model_type: object) -> None:
        self.model_type = model_type
        super().__init__(f"Unsupported calculation mode or model type '{model_type}'")


class UnsupportedMethod(EstimationError):
    """Raised when a fine-tuning method is not known."""

    error_type = "UnsupportedMethod"

    def __init__(self, method: object) -> None:
        self.method = method
        super().__init__(f"Unsupported fine-tuning method '{method}'")


class FormatBreakingChange(Exception):
    """Raised when an upstream data source has changed its format.

    Carries *source* (e.g. "gpuhunt") and a human-readable *details* string
    so the catalog refresh can explain what broke.
    """

    def __init__(self, source: str, details: str) -> None:
        self.source = source
        self.details = details
        super().__init__(f"Breaking format change in {source}: {details}")
