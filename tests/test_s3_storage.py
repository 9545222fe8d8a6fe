import os
import unittest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from crudform.services.s3_storage import S3Storage, build_object_key


def _client_error(code, operation):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class S3StorageTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("crudform.services.s3_storage.boto3.client")
        self.client = MagicMock()
        patcher.start().return_value = self.client
        self.addCleanup(patcher.stop)

    def test_object_keys_are_prefixed_and_sanitized(self):
        key = build_object_key("/images/", "my cover?.png")
        prefix, name = key.split("/", 1)
        self.assertEqual(prefix, "images")
        self.assertTrue(name.endswith("-my_cover_.png"))
        self.assertNotEqual(build_object_key("images", "a.png"), build_object_key("images", "a.png"))

    def test_missing_bucket_is_created_once(self):
        self.client.head_bucket.side_effect = _client_error("404", "HeadBucket")
        storage = S3Storage()

        storage.delete_object("a")
        storage.delete_object("b")

        self.client.create_bucket.assert_called_once_with(Bucket=storage.bucket)
        self.assertEqual(self.client.head_bucket.call_count, 1)

    def test_delete_of_absent_object_is_ignored(self):
        self.client.delete_object.side_effect = _client_error("NoSuchKey", "DeleteObject")
        S3Storage().delete_object("images/gone.png")

    def test_other_delete_errors_propagate(self):
        self.client.delete_object.side_effect = _client_error("AccessDenied", "DeleteObject")
        with self.assertRaises(ClientError):
            S3Storage().delete_object("images/locked.png")

    def test_upload_passes_content_type(self):
        storage = S3Storage()
        fileobj = object()
        storage.upload_fileobj(fileobj, "files/a.pdf", "application/pdf")

        self.client.upload_fileobj.assert_called_once_with(
            fileobj, storage.bucket, "files/a.pdf", ExtraArgs={"ContentType": "application/pdf"}
        )


if __name__ == "__main__":
    unittest.main()
