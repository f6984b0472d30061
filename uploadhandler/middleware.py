from typing import Callable, Iterable, Optional

from werkzeug.utils import redirect
from werkzeug.wrappers import Request

from .config import UploadConfig
from .logs import lifecycle_logger, request_id, sanitize_log_value
from .pages import ErrorPager, ErrorResponder
from .paths import PathMatcher
from .storage import UploadFailure, UploadPersister

WSGIApp = Callable[[dict, Callable], Iterable[bytes]]


class UploadHandler:
    """WSGI middleware that stores files POSTed to one path.

    Every other request, including GETs of the upload path, goes to the
    wrapped application untouched.
    """

    def __init__(self, app: WSGIApp, config: UploadConfig) -> None:
        self.app = app
        self.config = config
        self.matcher = PathMatcher(config.upload_path)
        self.persister = UploadPersister(config)
        self.responder = ErrorResponder(config.pager)

    def intercepts(self, request: Request) -> bool:
        return request.method == "POST" and self.matcher.matches(request.path)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        request = Request(environ, shallow=True)
        if not self.intercepts(request):
            return self.app(environ, start_response)

        request_id(environ)
        outcome = self.persister.process(environ)
        if isinstance(outcome, UploadFailure):
            response = self.responder.respond(outcome.message, outcome.status)
        else:
            response = redirect(self.config.next_url, code=303)

        lifecycle_logger.bind(environ).info(
            "upload_request_completed path=%s status=%d",
            sanitize_log_value(request.path),
            response.status_code,
        )
        return response(environ, start_response)


def wrap(
    app: WSGIApp,
    dest_dir: str,
    field_name: str,
    upload_url: str,
    next_url: str,
    max_size: int,
    pager: Optional[ErrorPager] = None,
) -> UploadHandler:
    """Wrap *app* so that POSTs to *upload_url* are stored in *dest_dir*.

    *field_name* is the form field holding the file, *next_url* the redirect
    target after a successful upload, and *max_size* the largest accepted
    body in bytes (``<= 0`` selects 8 MiB). *pager* may customize error
    pages.
    """

    config = UploadConfig(
        dest_dir=dest_dir,
        field_name=field_name,
        upload_path=upload_url,
        next_url=next_url,
        max_size=max_size,
        pager=pager,
    )
    return UploadHandler(app, config)
