"""Tests for the blob store, identity provider and email relay clients."""

from unittest.mock import MagicMock, patch

import jwt
import pytest
import requests
from botocore.exceptions import ClientError

from src.integrations.email_client import EmailDeliveryError, EmailRelay
from src.integrations.identity_client import (
    IdentityError,
    IdentityProvider,
    IdentityUserNotFoundError,
    InvalidTokenError,
)
from src.integrations.storage_client import BlobNotFoundError, BlobStore, BlobStoreError


APP_SECRET = "app-check-test-secret-0123456789abcdef"


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


class TestBlobStore:
    @pytest.fixture
    def s3(self):
        return MagicMock()

    @pytest.fixture
    def blob_store(self, s3):
        return BlobStore({"bucket": "uploads"}, client=s3)

    def test_object_path_from_download_url(self):
        url = "https://firebasestorage.googleapis.com/v0/b/uploads/o/products%2FU1%2Fbasil.jpg?alt=media&token=abc"

        assert BlobStore.object_path_from_url(url) == "products/U1/basil.jpg"

    def test_object_path_from_plain_url(self):
        assert BlobStore.object_path_from_url("https://cdn.example.com/avatars/U1.png") == "avatars/U1.png"

    def test_is_managed_url(self, blob_store):
        assert blob_store.is_managed_url("https://firebasestorage.googleapis.com/v0/b/uploads/o/a.jpg")
        assert not blob_store.is_managed_url("https://example.com/a.jpg")
        assert not blob_store.is_managed_url(None)

    def test_delete(self, blob_store, s3):
        blob_store.delete("products/a.jpg")

        s3.head_object.assert_called_once_with(Bucket="uploads", Key="products/a.jpg")
        s3.delete_object.assert_called_once_with(Bucket="uploads", Key="products/a.jpg")

    def test_delete_missing(self, blob_store, s3):
        s3.head_object.side_effect = client_error("404")

        with pytest.raises(BlobNotFoundError):
            blob_store.delete("products/a.jpg")
        s3.delete_object.assert_not_called()

    def test_delete_url_tolerates_missing_object(self, blob_store, s3):
        s3.head_object.side_effect = client_error("NoSuchKey")

        assert blob_store.delete_url("https://firebasestorage.googleapis.com/v0/b/uploads/o/a.jpg") is True

    def test_delete_url_reports_other_failures(self, blob_store, s3):
        s3.delete_object.side_effect = client_error("AccessDenied")

        assert blob_store.delete_url("https://firebasestorage.googleapis.com/v0/b/uploads/o/a.jpg") is False
        with pytest.raises(BlobStoreError):
            blob_store.delete("a.jpg")


class TestIdentityProvider:
    SECRET = "identity-test-secret-0123456789abcdef"

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def identity(self, session):
        config = {"jwt_secret": self.SECRET, "audience": None, "admin_url": "http://identity.local/admin"}
        return IdentityProvider(config, app_check_secret=APP_SECRET, session=session)

    def test_verify_token(self, identity):
        token = jwt.encode({"uid": "U1", "email": "ann@example.com", "email_verified": True}, self.SECRET, algorithm="HS256")

        caller = identity.verify_token(token)

        assert caller.uid == "U1"
        assert caller.email == "ann@example.com"
        assert caller.email_verified is True

    def test_verify_token_subject_claim(self, identity):
        token = jwt.encode({"sub": "U2"}, self.SECRET, algorithm="HS256")

        caller = identity.verify_token(token)

        assert caller.uid == "U2"
        assert caller.email_verified is False

    def test_invalid_token(self, identity):
        token = jwt.encode({"uid": "U1"}, "other-secret-0123456789abcdef-other", algorithm="HS256")

        with pytest.raises(InvalidTokenError):
            identity.verify_token(token)
        with pytest.raises(InvalidTokenError):
            identity.verify_token(jwt.encode({"email": "x@example.com"}, self.SECRET, algorithm="HS256"))

    def test_verify_app_check(self, identity):
        assert identity.verify_app_check(jwt.encode({"app": "web"}, APP_SECRET, algorithm="HS256")) is True
        assert identity.verify_app_check(jwt.encode({"app": "web"}, "wrong-secret-0123456789abcdef-wrong", algorithm="HS256")) is False
        assert identity.verify_app_check(None) is False

    def test_get_user(self, identity, session):
        session.get.return_value = MagicMock(status_code=200, ok=True, json=lambda: {"uid": "U1", "email": "a@b.co"})

        assert identity.get_user("U1")["email"] == "a@b.co"
        assert session.get.call_args.args[0] == "http://identity.local/admin/users/U1"

    def test_get_missing_user(self, identity, session):
        session.get.return_value = MagicMock(status_code=404, ok=False)

        with pytest.raises(IdentityUserNotFoundError):
            identity.get_user("U1")

    def test_delete_user_already_gone(self, identity, session):
        session.delete.return_value = MagicMock(status_code=404, ok=False)

        identity.delete_user("U1")

    def test_delete_user_failure(self, identity, session):
        session.delete.return_value = MagicMock(status_code=500, ok=False)
        with pytest.raises(IdentityError):
            identity.delete_user("U1")

        session.delete.side_effect = requests.ConnectionError("refused")
        with pytest.raises(IdentityError):
            identity.delete_user("U1")


class TestEmailRelay:
    def test_disabled_without_credentials(self):
        relay = EmailRelay({"user": "", "password": ""})

        with patch("src.integrations.email_client.smtplib.SMTP_SSL") as mock_smtp:
            assert relay.send("ann@example.com", "Hi", "<p>Hi</p>") is None
            mock_smtp.assert_not_called()

    def test_send(self):
        relay = EmailRelay({"user": "noreply@example.com", "password": "secret"})

        with patch("src.integrations.email_client.smtplib.SMTP_SSL") as mock_smtp:
            message_id = relay.send("ann@example.com", "Hi", "<p>Hi</p>", reply_to="bob@example.com")

        server = mock_smtp.return_value.__enter__.return_value
        server.login.assert_called_once_with("noreply@example.com", "secret")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "ann@example.com"
        assert sent["Reply-To"] == "bob@example.com"
        assert message_id == sent["Message-ID"]

    def test_send_failure(self):
        relay = EmailRelay({"user": "noreply@example.com", "password": "secret"})

        with patch("src.integrations.email_client.smtplib.SMTP_SSL", side_effect=OSError("unreachable")):
            with pytest.raises(EmailDeliveryError):
                relay.send("ann@example.com", "Hi", "<p>Hi</p>")
