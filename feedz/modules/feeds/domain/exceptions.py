"""Feed domain exceptions."""

from feedz.core.domain.exceptions import (
    FetchTimeoutError,
    InvalidInputError,
    NetworkError,
    ParseError,
)


class InvalidFeedUrlError(InvalidInputError):
    """Raised when a feed URL is not an absolute http(s) URL."""

    def __init__(self, url: str):
        self.url = url
        super().__init__("URL must start with http:// or https://")


class FeedFetchError(NetworkError):
    """Raised when a feed document cannot be downloaded."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Failed to fetch feed from {url}: {reason}")


class FeedFetchTimeoutError(FetchTimeoutError):
    """Raised when a feed download exceeds its timeout."""

    def __init__(self, url: str, timeout: float):
        self.url = url
        super().__init__(f"Timed out after {timeout:g}s fetching {url}")


class FeedParseError(ParseError):
    """Raised when a feed body is malformed.

    底层原因通过异常链（raise ... from e）保留。
    """

    def __init__(self, message: str):
        super().__init__(f"Failed to parse feed: {message}")


class UnsupportedFormatError(FeedParseError):
    """Raised when the document root is neither an RSS channel nor an Atom feed."""

    error_code = "UNSUPPORTED_FORMAT"

    def __init__(self, root_tag: str | None = None):
        self.root_tag = root_tag
        message = "Unsupported feed format. Only RSS and Atom feeds are supported."
        if root_tag:
            message = f"{message} (root element: {root_tag})"
        super().__init__(message)
