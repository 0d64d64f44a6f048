"""Base domain exceptions.

所有领域异常都应继承自 DomainException，并通过 error_code 类属性
标识错误类别，供调用方（订阅流程、同步界面）映射为可操作的提示。
"""


class DomainException(Exception):
    """Base exception for all domain errors.

    子类可以通过定义 error_code 类属性来自定义错误代码（默认 "DOMAIN_ERROR"）。
    """

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str = "A domain error occurred"):
        self.message = message
        super().__init__(self.message)


class EntityNotFoundError(DomainException):
    """Raised when an entity is not found."""

    error_code = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str | None = None):
        message = f"{entity_type} not found"
        if entity_id:
            message = f"{entity_type} with id '{entity_id}' not found"
        super().__init__(message)


class ValidationError(DomainException):
    """Raised when validation fails."""

    error_code = "VALIDATION_ERROR"


class InvalidInputError(ValidationError):
    """Raised for malformed URLs or identifiers, before any network call."""

    error_code = "INVALID_INPUT"


class NetworkError(DomainException):
    """Raised when a remote endpoint cannot be reached."""

    error_code = "NETWORK_ERROR"


class FetchTimeoutError(NetworkError):
    """Raised when a remote endpoint does not answer in time."""

    error_code = "TIMEOUT"


class ParseError(DomainException):
    """Raised when a remote document cannot be parsed."""

    error_code = "PARSE_ERROR"


class TotalFailureError(DomainException):
    """Raised when every endpoint or stage of a fan-out failed."""

    error_code = "TOTAL_FAILURE"
