"""Error responses, optionally replaced by pages from an error-page provider."""

from typing import Protocol

from markupsafe import escape
from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.wrappers import Response

PLAIN_MIMETYPE = "text/plain"


class ErrorPager(Protocol):
    """Anything that can turn an error text and status into a page.

    Returning an empty value means "use the raw text". A ``mimetype``
    attribute, when present, labels the returned pages.
    """

    def get_error_page(self, data: bytes, status: int) -> bytes:
        ...


class NullErrorPager:
    mimetype = PLAIN_MIMETYPE

    def get_error_page(self, data: bytes, status: int) -> bytes:
        return b""


class HtmlErrorPager:
    """Render errors as a small standalone HTML document."""

    mimetype = "text/html"

    template = (
        "<!DOCTYPE html>\n"
        "<html><head><title>{status} {phrase}</title></head>\n"
        "<body><h1>{status} {phrase}</h1>\n<p>{message}</p></body></html>\n"
    )

    def get_error_page(self, data: bytes, status: int) -> bytes:
        message = data.decode("utf-8", errors="replace")
        page = self.template.format(
            status=int(status),
            phrase=escape(HTTP_STATUS_CODES.get(status, "Error")),
            message=escape(message),
        )
        return page.encode("utf-8")


class ErrorResponder:
    def __init__(self, pager: ErrorPager) -> None:
        self.pager = pager

    def respond(self, message: str, status: int) -> Response:
        body = message.encode("utf-8")
        mimetype = PLAIN_MIMETYPE
        page = self.pager.get_error_page(body, status)
        if page:
            body = page
            mimetype = getattr(self.pager, "mimetype", PLAIN_MIMETYPE)
        return Response(body, status=status, mimetype=mimetype)
