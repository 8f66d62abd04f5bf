"""Plain-text HTTP responses used by the webhook and proxy."""

from fastapi.responses import PlainTextResponse


def ok(message: str = "OK") -> PlainTextResponse:
    """200 with a one-line message."""
    return PlainTextResponse(content=message + "\n", status_code=200)


def bad_request(message: str) -> PlainTextResponse:
    """400: the webhook request itself was unusable."""
    return PlainTextResponse(content=message + "\n", status_code=400)


def backend_error(message: str, status_code: int = 500) -> PlainTextResponse:
    """A preview backend could not serve the request."""
    return PlainTextResponse(content=message + "\n", status_code=status_code)
