import logging
import os

from flask import Flask

from .config import UploadConfig, safe_int_env
from .logs import configure_logging
from .middleware import UploadHandler
from .pages import HtmlErrorPager

UPLOAD_FORM = """<!DOCTYPE html><html><head><title>Upload</title></head><body>
<form action="/{upload_path}" method="post" enctype="multipart/form-data">
	<p><label for="{field}">Filename:</label>
	<input type="file" name="{field}" id="{field}"></p>
	<p><input type="submit" name="submit" value="Submit"></p>
</form></body></html>"""


def create_app(config: UploadConfig) -> Flask:
    """Return a Flask app showing an upload form, wrapped by the upload handler."""

    app = Flask(__name__)

    @app.route("/")
    def upload_form():
        return UPLOAD_FORM.format(upload_path=config.upload_path, field=config.field_name)

    app.wsgi_app = UploadHandler(app.wsgi_app, config)
    return app


def main() -> None:
    configure_logging(log_file=os.environ.get("UPLOADHANDLER_LOG_FILE"))
    config = UploadConfig.from_env(pager=HtmlErrorPager())
    os.makedirs(config.dest_dir, exist_ok=True)

    host = os.environ.get("UPLOADHANDLER_HOST", "127.0.0.1")
    port = safe_int_env("UPLOADHANDLER_PORT", 8080)
    logging.getLogger("uploadhandler.demo").info(
        "demo_starting host=%s port=%d dest_dir=%s", host, port, config.dest_dir
    )
    create_app(config).run(host=host, port=port)
