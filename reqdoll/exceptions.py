from typing import Optional


class ReqdollException(Exception):
    """Base exception for all reqdoll errors."""

    message = 'An unexpected error occurred'

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.message
        super().__init__(self.message)


class InvalidArgument(ReqdollException):
    """Raised when a URL, request template or option set is malformed."""

    message = 'Invalid argument'


class RequestError(ReqdollException):
    """Base for errors raised while dispatching a request."""

    message = 'Request failed'

    def __init__(
        self,
        message: Optional[str] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ):
        self.url = url
        self.method = method
        base = message or self.message
        if method and url:
            base = f'{base} ({method} {url})'
        super().__init__(base)


class TooManyRedirects(RequestError):
    """Raised when a redirect chain exceeds the configured maximum."""

    message = 'Max redirect count exceeded'

    def __init__(
        self,
        max_redirects: int,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ):
        self.max_redirects = max_redirects
        super().__init__(f'{self.message}: {max_redirects}', url=url, method=method)


class TransportFailure(RequestError):
    """Raised when the transport could not complete an exchange."""

    message = 'Transport failure'

    def __init__(
        self,
        message: Optional[str] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.cause = cause
        super().__init__(message, url=url, method=method)


class ResponseStatusError(RequestError):
    """Raised for non-2xx/3xx responses when fail_on_status_code is enabled."""

    message = 'Response status check failed'

    def __init__(
        self,
        status: int,
        status_text: str,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ):
        self.status = status
        self.status_text = status_text
        super().__init__(f'{status} {status_text}'.rstrip(), url=url, method=method)


class Disposed(ReqdollException):
    """Raised when a response body or a disposed context is accessed."""

    message = 'Response has been disposed'


class CodecFailure(ReqdollException):
    """Raised when storage state text cannot be decoded."""

    message = 'Malformed storage state'


class IOFailure(ReqdollException):
    """Raised when storage state cannot be written to or read from disk."""

    message = 'Storage state file operation failed'

    def __init__(self, message: Optional[str] = None, path: Optional[str] = None):
        self.path = path
        base = message or self.message
        if path:
            base = f'{base}: {path}'
        super().__init__(base)
