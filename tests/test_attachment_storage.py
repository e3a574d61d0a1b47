import os
import unittest
from unittest.mock import Mock

from botocore.exceptions import ClientError

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from portal.services.s3_storage import AttachmentStorage, attachment_object_key


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class AttachmentStorageTests(unittest.TestCase):
    def test_object_key_is_scoped_to_request_and_sanitized(self):
        key = attachment_object_key("abc", "policy scan (v2).pdf")
        self.assertTrue(key.startswith("requests/abc/"))
        self.assertTrue(key.endswith("-policy_scan_v2_.pdf"))
        self.assertTrue(attachment_object_key("abc", "").endswith("-file.bin"))

    def test_missing_bucket_is_created_once(self):
        client = Mock()
        client.head_bucket.side_effect = _client_error("404", "HeadBucket")
        storage = AttachmentStorage(client=client, bucket="attachments")

        storage.put_object("requests/1/a.txt", b"hello", "text/plain")
        storage.delete_object("requests/1/a.txt")

        client.create_bucket.assert_called_once_with(Bucket="attachments")
        client.head_bucket.assert_called_once()
        client.put_object.assert_called_once_with(
            Bucket="attachments", Key="requests/1/a.txt", Body=b"hello", ContentType="text/plain"
        )
        client.delete_object.assert_called_once_with(Bucket="attachments", Key="requests/1/a.txt")

    def test_unexpected_bucket_error_propagates(self):
        client = Mock()
        client.head_bucket.side_effect = _client_error("AccessDenied", "HeadBucket")
        storage = AttachmentStorage(client=client, bucket="attachments")

        with self.assertRaises(ClientError):
            storage.get_object("requests/1/a.txt")
        client.get_object.assert_not_called()
