"""Tests for AccountService: account deletion cascade and product archival."""

from unittest.mock import patch

import pytest

from src.db.document_store import ChangeEvent
from src.errors import InternalError, NotFoundError
from src.integrations.identity_client import IdentityError
from src.services.account_service import ACCOUNT_DELETED_MESSAGE, AccountService, archive_collection

AVATAR_URL = "https://firebasestorage.googleapis.com/v0/b/bucket/o/avatars%2Falice.jpg?alt=media"


def image_url(name):
    return f"https://firebasestorage.googleapis.com/v0/b/bucket/o/products%2F{name}.jpg?alt=media"


class TestDeleteUserAccount:
    @pytest.fixture
    def account_service(self, context):
        return context.accounts

    @pytest.fixture
    def marketplace(self, context, store, users):
        """Alice with products and exchanges in every state."""
        store.set("users", "alice", {"name": "Alice", "email": "alice@example.com", "avatarUrl": AVATAR_URL})
        store.set("users", "carol", {"name": "Carol", "email": "carol@example.com"})
        store.set("products", "P001", {"name": "Tomato plants", "userId": "alice", "imageUrls": [image_url("p1")]})
        store.set(
            "products",
            "P002",
            {"name": "Basil", "userId": "alice", "imageUrls": [image_url("p2"), "https://example.com/external.jpg"]},
        )
        store.set("products", "P100", {"name": "Lettuce", "userId": "bob", "imageUrls": []})

        exchanges = context.exchanges
        pending = exchanges.create_offer("P001", "Tomato plants", "bob", "alice", {"type": "chat"})
        accepted = exchanges.create_offer("P100", "Lettuce", "alice", "bob", {"type": "chat"})
        exchanges.update_status(accepted, "accepted", "bob")
        completed = exchanges.create_offer("P002", "Basil", "carol", "alice", {"type": "chat"})
        exchanges.update_status(completed, "accepted", "alice")
        exchanges.update_status(completed, "completed", "carol")
        rejected = exchanges.create_offer("P002", "Basil", "bob", "alice", {"type": "chat"})
        exchanges.update_status(rejected, "rejected", "alice")
        unrelated = exchanges.create_offer("P100", "Lettuce", "carol", "bob", {"type": "chat"})
        return {
            "pending": pending,
            "accepted": accepted,
            "completed": completed,
            "rejected": rejected,
            "unrelated": unrelated,
        }

    def test_deletes_account(self, account_service, store, mock_identity, marketplace):
        """Test the live profile and products are removed and the identity deleted."""
        result = account_service.delete_user_account("alice")

        assert result == {"success": True, "deletedProducts": 2, "rejectedExchanges": 2}
        assert not store.get("users", "alice").exists
        assert not store.get("products", "P001").exists
        assert not store.get("products", "P002").exists
        assert store.get("products", "P100").exists
        mock_identity.delete_user.assert_called_once_with("alice")

    def test_archives_profile_and_products(self, account_service, store, marketplace):
        """Test archived copies are kept without image references."""
        account_service.delete_user_account("alice")

        archived_user = store.get("archived_users", "alice")
        assert archived_user.get("name") == "Alice"
        assert archived_user.get("avatarUrl") is None
        assert archived_user.get("originalUid") == "alice"
        assert archived_user.get("deletionReason") == "user_request"
        assert archived_user.get("archivedAt") is not None

        archived_products = store.query(archive_collection("alice"))
        assert sorted(p.id for p in archived_products) == ["P001", "P002"]
        assert all(p.get("imageUrls") == [] for p in archived_products)
        assert all(p.get("archivedAt") is not None for p in archived_products)

    def test_deletes_managed_images_only(self, account_service, mock_storage, marketplace):
        """Test avatar and product images in managed storage are deleted."""
        account_service.delete_user_account("alice")

        deleted = sorted(call.args[0] for call in mock_storage.delete_url.call_args_list)
        assert deleted == sorted([AVATAR_URL, image_url("p1"), image_url("p2")])

    def test_missing_images_do_not_abort(self, account_service, store, mock_storage, mock_identity, marketplace):
        """Test storage failures are tolerated."""
        mock_storage.delete_url.return_value = False

        result = account_service.delete_user_account("alice")

        assert result["success"] is True
        mock_identity.delete_user.assert_called_once_with("alice")

    def test_rejects_open_exchanges(self, account_service, store, marketplace, notifications_for):
        """Test every open exchange is force-rejected and its counterparty notified once."""
        account_service.delete_user_account("alice")

        for key in ("pending", "accepted"):
            exchange = store.get("exchanges", marketplace[key])
            assert exchange.get("status") == "rejected"
            assert exchange.get("rejectionReason") == "user_deleted"

        assert store.get("exchanges", marketplace["completed"]).get("status") == "completed"
        assert store.get("exchanges", marketplace["rejected"]).get("rejectionReason") is None
        assert store.get("exchanges", marketplace["unrelated"]).get("status") == "pending"

        open_left = [
            d
            for field in ("requesterId", "ownerId")
            for d in store.query("exchanges", [(field, "==", "alice"), ("status", "in", ["pending", "accepted"])])
        ]
        assert open_left == []

        rejections = [
            n for n in notifications_for("bob", "OFFER_REJECTED") if n.get("metadata.message") == ACCOUNT_DELETED_MESSAGE
        ]
        assert sorted(n.get("entityId") for n in rejections) == sorted([marketplace["pending"], marketplace["accepted"]])
        assert all(n.get("senderId") == "alice" for n in rejections)
        assert notifications_for("carol", "OFFER_REJECTED") == []

    def test_missing_user(self, account_service, mock_identity):
        with pytest.raises(NotFoundError):
            account_service.delete_user_account("ghost")
        mock_identity.delete_user.assert_not_called()

    def test_identity_deleted_last(self, account_service, store, mock_identity, marketplace):
        """Test a failing step stops the cascade before the identity is deleted."""
        with patch.object(AccountService, "_reject_open_exchanges", side_effect=RuntimeError("store down")):
            with pytest.raises(InternalError) as exc_info:
                account_service.delete_user_account("alice")

        assert exc_info.value.status_code == 500
        assert "reject_exchanges" in exc_info.value.message
        mock_identity.delete_user.assert_not_called()

    def test_identity_failure(self, account_service, mock_identity, marketplace):
        mock_identity.delete_user.side_effect = IdentityError("unreachable")

        with pytest.raises(InternalError) as exc_info:
            account_service.delete_user_account("alice")

        assert "delete_identity" in exc_info.value.message

    def test_retry_after_identity_failure(self, account_service, store, mock_identity, marketplace, notifications_for):
        """Test a retry after the profile was removed resumes from the archive and finishes."""
        mock_identity.delete_user.side_effect = [IdentityError("unreachable"), None]
        with pytest.raises(InternalError):
            account_service.delete_user_account("alice")
        assert not store.get("users", "alice").exists

        result = account_service.delete_user_account("alice")

        assert result == {"success": True, "deletedProducts": 0, "rejectedExchanges": 0}
        assert mock_identity.delete_user.call_count == 2
        archived_user = store.get("archived_users", "alice")
        assert archived_user.get("name") == "Alice"
        assert archived_user.get("deletionReason") == "user_request"
        assert len(store.query(archive_collection("alice"))) == 2
        rejections = [
            n for n in notifications_for("bob", "OFFER_REJECTED") if n.get("metadata.message") == ACCOUNT_DELETED_MESSAGE
        ]
        assert len(rejections) == 2

    def test_skips_exchange_closed_meanwhile(self, account_service, store, marketplace, notifications_for):
        """Test an exchange completed after the open-exchange query is left alone."""
        stale = account_service.exchanges.open_exchanges_for_user("alice")
        account_service.exchanges.update_status(marketplace["accepted"], "completed", "bob")

        with patch.object(account_service.exchanges, "open_exchanges_for_user", return_value=stale):
            result = account_service.delete_user_account("alice")

        assert result["rejectedExchanges"] == 1
        accepted = store.get("exchanges", marketplace["accepted"])
        assert accepted.get("status") == "completed"
        assert accepted.get("rejectionReason") is None
        rejections = [
            n for n in notifications_for("bob", "OFFER_REJECTED") if n.get("metadata.message") == ACCOUNT_DELETED_MESSAGE
        ]
        assert [n.get("entityId") for n in rejections] == [marketplace["pending"]]

    def test_batches_are_chunked(self, context, store, mock_identity, users):
        """Test archives larger than the batch limit are split over several batches."""
        for index in range(7):
            store.set("products", f"P{index}", {"name": f"Seedling {index}", "userId": "alice", "imageUrls": []})
        account_service = AccountService(
            store, context.exchanges, context.notifications, context.accounts.storage, mock_identity, batch_limit=3
        )

        result = account_service.delete_user_account("alice")

        assert result["deletedProducts"] == 7
        assert len(store.query(archive_collection("alice"))) == 7
        assert store.query("products", [("userId", "==", "alice")]) == []


class TestProductArchiveTrigger:
    def test_deleted_product_is_archived(self, context, store):
        store.set("products", "P001", {"name": "Tomato plants", "userId": "alice", "imageUrls": [image_url("p1")]})

        store.delete("products", "P001")

        archived = store.get(archive_collection("alice"), "P001")
        assert archived.get("name") == "Tomato plants"
        assert archived.get("imageUrls") == []
        assert archived.get("originalProductId") == "P001"
        assert archived.get("deletionReason") == "product_deleted_trigger"
        assert archived.get("archivedAt") is not None

    def test_product_without_owner(self, context):
        event = ChangeEvent("products", "P009", "deleted", {"name": "Orphan"}, None)

        assert context.accounts.on_product_deleted(event) is False

    def test_event_without_data(self, context):
        event = ChangeEvent("products", "P009", "deleted", None, None)

        assert context.accounts.on_product_deleted(event) is False
