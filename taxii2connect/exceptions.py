"""TAXII2 Connection Error Classes."""


class TAXIIServiceException(Exception):
    """Base class for exceptions raised by this library."""
    pass


class InvalidArgumentsError(TAXIIServiceException):
    """Invalid arguments were passed to a method."""
    pass


class InvalidURLError(InvalidArgumentsError):
    """A request path could not be turned into an http(s) URL."""
    pass


class UnknownError(TAXIIServiceException):
    """No valid HTTP response was obtained, or the failure could not be
    classified."""

    def __init__(self, message="Unknown error"):
        super(UnknownError, self).__init__(message)


class APIError(TAXIIServiceException):
    """The server answered with an HTTP error status.

    Attributes:
        reason (str): human readable category of the status code
        status_code (int): the HTTP status code
        error_message (ErrorMessage): the TAXII error message resource sent
            by the server in the response body, if it could be decoded.

    """

    def __init__(self, reason, status_code=None, error_message=None):
        super(APIError, self).__init__(reason)
        self.reason = reason
        self.status_code = status_code
        self.error_message = error_message


class ParserError(TAXIIServiceException):
    """A response body could not be decoded into the requested resource."""

    def __init__(self, reason):
        super(ParserError, self).__init__(reason)
        self.reason = reason


class NetworkError(TAXIIServiceException):
    """The transport failed: timeout, DNS resolution, connection reset..."""

    def __init__(self, cause):
        super(NetworkError, self).__init__(str(cause))
        self.cause = cause
