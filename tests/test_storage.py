import pytest
from botocore.exceptions import ClientError

from rxflow.core.errors import TransientExternalError
from rxflow.services.storage import ArchiveStorage, archive_key


class RecordingS3:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def upload_file(self, filename, bucket, key, ExtraArgs=None):
        if self.error:
            raise self.error
        self.calls.append((filename, bucket, key, ExtraArgs))


def test_upload_returns_uri_and_sets_content_type(tmp_path):
    f = tmp_path / "abc.jpg"
    f.write_bytes(b"\xff\xd8")
    s3 = RecordingS3()

    uri = ArchiveStorage("prescriptions", s3).upload(f, archive_key("abc", "abc.jpg"), ext="jpg")

    assert uri == "s3://prescriptions/jobs/abc/abc.jpg"
    assert s3.calls == [(str(f), "prescriptions", "jobs/abc/abc.jpg", {"ContentType": "image/jpeg"})]


def test_upload_error_is_transient(tmp_path):
    f = tmp_path / "abc.pdf"
    f.write_bytes(b"%PDF")
    err = ClientError({"Error": {"Code": "503", "Message": "Slow Down"}}, "PutObject")

    with pytest.raises(TransientExternalError):
        ArchiveStorage("prescriptions", RecordingS3(error=err)).upload(f, "jobs/abc/abc.pdf")
