import errno
import io
import os
import re
import stat
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from werkzeug.test import EnvironBuilder

from uploadhandler.config import UploadConfig
from uploadhandler.errors import SniffFailed
from uploadhandler.naming import FilenameSynthesizer
from uploadhandler.storage import UploadFailure, UploadPersister, UploadSuccess

JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00" + bytes(range(256)) * 4
NAME_PATTERN = re.compile(r"^[0-9a-f]+_.+\.[a-z]+$")

_real_fdopen = os.fdopen


class _FullDisk:
    def __init__(self, handle):
        self.handle = handle

    def write(self, data):
        raise OSError(errno.ENOSPC, "No space left on device")

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.handle.close()
        return False


def _environ(data=None, **kwargs):
    builder = EnvironBuilder(method="POST", path="/up", data=data, **kwargs)
    try:
        return builder.get_environ()
    finally:
        builder.close()


class UploadPersisterTests(unittest.TestCase):
    def setUp(self):
        self.storage_dir = tempfile.TemporaryDirectory()
        self.dest = Path(self.storage_dir.name)
        self.config = UploadConfig(
            dest_dir=str(self.dest),
            field_name="uploadFile",
            upload_path="up",
            next_url="/",
            max_size=64 * 1024,
        )
        self.persister = UploadPersister(self.config)

    def tearDown(self):
        self.storage_dir.cleanup()

    def _stored_files(self):
        return sorted(path.name for path in self.dest.iterdir())

    def test_stores_sniffed_image(self):
        outcome = self.persister.process(
            _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertIsInstance(outcome, UploadSuccess)
        stored = Path(outcome.stored_path)
        self.assertEqual(stored.parent, self.dest)
        self.assertRegex(stored.name, NAME_PATTERN)
        self.assertTrue(stored.name.endswith("_profi.jpeg"))
        self.assertEqual(stored.read_bytes(), JPEG_BYTES)

    def test_destination_permissions_are_restrictive(self):
        outcome = self.persister.process(
            _environ({"uploadFile": (io.BytesIO(b"plain notes\n"), "notes.txt")})
        )
        mode = stat.S_IMODE(os.stat(outcome.stored_path).st_mode)
        self.assertEqual(mode & ~0o640, 0)

    def test_preserved_extension_is_kept(self):
        outcome = self.persister.process(
            _environ({"uploadFile": (io.BytesIO(b"a,b\n1,2\n"), "my table.csv")})
        )
        self.assertTrue(outcome.stored_path.endswith("_my_table.csv"))

    def test_body_over_limit(self):
        persister = UploadPersister(
            UploadConfig(str(self.dest), "uploadFile", "up", "/", max_size=128)
        )
        outcome = persister.process(
            _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertEqual(outcome, UploadFailure("File too big", 400))
        self.assertEqual(self._stored_files(), [])

    def test_non_multipart_body(self):
        outcome = self.persister.process(_environ(b"raw bytes", content_type="text/plain"))
        self.assertEqual(outcome, UploadFailure("File too big", 400))

    def test_multipart_without_boundary(self):
        outcome = self.persister.process(
            _environ(b"--x\r\n\r\n", content_type="multipart/form-data")
        )
        self.assertEqual(outcome, UploadFailure("File too big", 400))

    def test_truncated_body(self):
        environ = _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        body = environ["wsgi.input"].read()
        environ["wsgi.input"] = io.BytesIO(body[: len(body) // 2])
        outcome = self.persister.process(environ)
        self.assertEqual(outcome, UploadFailure("File too big", 400))
        self.assertEqual(self._stored_files(), [])

    def _capture_parsed_files(self):
        parsed = []
        real_parse = UploadPersister.parse

        def capture(persister, environ):
            files = real_parse(persister, environ)
            parsed.append(files)
            return files

        patcher = mock.patch.object(UploadPersister, "parse", autospec=True, side_effect=capture)
        patcher.start()
        self.addCleanup(patcher.stop)
        return parsed

    def _assert_uploads_closed(self, parsed):
        self.assertEqual(len(parsed), 1)
        storages = list(parsed[0].values())
        self.assertTrue(storages)
        for storage in storages:
            self.assertTrue(storage.stream.closed)

    def test_upload_streams_closed_after_success(self):
        parsed = self._capture_parsed_files()
        handles = []

        def fdopen(fd, mode):
            handles.append(_real_fdopen(fd, mode))
            return handles[-1]

        with mock.patch("uploadhandler.storage.os.fdopen", side_effect=fdopen):
            outcome = self.persister.process(
                _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
            )
        self.assertIsInstance(outcome, UploadSuccess)
        self._assert_uploads_closed(parsed)
        self.assertEqual(len(handles), 1)
        self.assertTrue(handles[0].closed)

    def test_upload_streams_closed_when_field_missing(self):
        parsed = self._capture_parsed_files()
        outcome = self.persister.process(
            _environ({"other": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertEqual(outcome, UploadFailure("Error retrieving file", 422))
        self._assert_uploads_closed(parsed)

    def test_streams_closed_after_write_failure(self):
        parsed = self._capture_parsed_files()
        destinations = []

        def fdopen(fd, mode):
            destinations.append(_FullDisk(_real_fdopen(fd, mode)))
            return destinations[-1]

        with mock.patch("uploadhandler.storage.os.fdopen", side_effect=fdopen):
            outcome = self.persister.process(
                _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
            )
        self.assertEqual(outcome, UploadFailure("Can't write destination file", 507))
        self._assert_uploads_closed(parsed)
        self.assertEqual(len(destinations), 1)
        self.assertTrue(destinations[0].handle.closed)

    def test_missing_field(self):
        outcome = self.persister.process(
            _environ({"other": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertEqual(outcome, UploadFailure("Error retrieving file", 422))
        self.assertEqual(self._stored_files(), [])

    def test_field_without_file(self):
        outcome = self.persister.process(
            _environ({"uploadFile": "just a value"}, content_type="multipart/form-data")
        )
        self.assertEqual(outcome, UploadFailure("Error retrieving file", 422))

    def test_sniff_failure(self):
        with mock.patch("uploadhandler.storage.sniff_content_type", side_effect=SniffFailed("short read")):
            outcome = self.persister.process(
                _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
            )
        self.assertEqual(outcome, UploadFailure("Invalid file", 422))

    def test_unsupported_media_type(self):
        with mock.patch("uploadhandler.storage.sniff_content_type", return_value="not-a-type"):
            outcome = self.persister.process(
                _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
            )
        self.assertEqual(outcome, UploadFailure("Can't read file type", 415))
        self.assertEqual(self._stored_files(), [])

    def test_empty_sniff_result_is_octet_stream(self):
        with mock.patch("uploadhandler.storage.sniff_content_type", return_value=""):
            outcome = self.persister.process(
                _environ({"uploadFile": (io.BytesIO(b"\x00\x01"), "blob.dat")})
            )
        self.assertTrue(outcome.stored_path.endswith("_blob.bin"))

    def test_destination_cannot_be_opened(self):
        persister = UploadPersister(
            UploadConfig(str(self.dest / "missing"), "uploadFile", "up", "/", max_size=0)
        )
        outcome = persister.process(
            _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertEqual(outcome, UploadFailure("Can't open destination file", 500))

    def test_write_failure_removes_partial_file(self):
        with mock.patch(
            "uploadhandler.storage.os.fdopen",
            side_effect=lambda fd, mode: _FullDisk(_real_fdopen(fd, mode)),
        ):
            outcome = self.persister.process(
                _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
            )
        self.assertEqual(outcome, UploadFailure("Can't write destination file", 507))
        self.assertEqual(self._stored_files(), [])

    def test_name_collision_picks_a_fresh_name(self):
        (self.dest / "1_profi.jpeg").write_bytes(b"earlier upload")
        clock = iter([1, 1, 2])
        persister = UploadPersister(
            self.config,
            synthesizer=FilenameSynthesizer(str(self.dest), clock=lambda: next(clock)),
        )
        outcome = persister.process(
            _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertEqual(outcome, UploadSuccess(str(self.dest / "2_profi.jpeg")))
        self.assertEqual((self.dest / "1_profi.jpeg").read_bytes(), b"earlier upload")

    def test_persistent_collision_never_overwrites(self):
        (self.dest / "1_profi.jpeg").write_bytes(b"earlier upload")
        persister = UploadPersister(
            self.config,
            synthesizer=FilenameSynthesizer(str(self.dest), clock=lambda: 1),
        )
        outcome = persister.process(
            _environ({"uploadFile": (io.BytesIO(JPEG_BYTES), "profi.jpg")})
        )
        self.assertEqual(outcome, UploadFailure("Can't open destination file", 500))
        self.assertEqual((self.dest / "1_profi.jpeg").read_bytes(), b"earlier upload")

    def test_failures_are_logged(self):
        with self.assertLogs("uploadhandler.lifecycle", level="WARNING") as captured:
            self.persister.process(_environ({"other": (io.BytesIO(b"x"), "x.txt")}))
        self.assertIn("upload_failed reason=FieldMissing status=422", captured.output[0])


if __name__ == "__main__":
    unittest.main()
