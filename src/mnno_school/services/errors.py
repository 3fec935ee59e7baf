"""Errors raised by the third-party proxy services."""


class ProxyError(Exception):
    """A proxied third-party call failed.

    ``status_code`` is the HTTP status the route should answer with.
    """

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
