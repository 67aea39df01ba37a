"""Account deletion cascade and product archival."""

import logging
from functools import partial
from typing import Any

from src.config import BATCH_LIMIT
from src.db.batch_writer import BatchWriter
from src.db.document_store import SERVER_TIMESTAMP, ChangeEvent, Document, DocumentStore, Transaction
from src.errors import InternalError, NotFoundError, ServiceError
from src.integrations.identity_client import IdentityProvider
from src.integrations.storage_client import BlobStore
from src.models.exchanges import OPEN_STATUSES
from src.models.notifications import NotificationType
from src.models.products import Product
from src.services.exchange_service import ExchangeService
from src.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

ACCOUNT_DELETED_MESSAGE = "The other user has deleted their account"


def archive_collection(user_id: str) -> str:
    return f"archived_users/{user_id}/products"


class AccountService:
    def __init__(
        self,
        store: DocumentStore,
        exchanges: ExchangeService,
        notifications: NotificationService,
        storage: BlobStore,
        identity: IdentityProvider,
        batch_limit: int = BATCH_LIMIT,
    ):
        self.store = store
        self.exchanges = exchanges
        self.notifications = notifications
        self.storage = storage
        self.identity = identity
        self.batch_limit = batch_limit

    def _writer(self) -> BatchWriter:
        return BatchWriter(self.store, limit=self.batch_limit, label="DELETE")

    def _archive(self, user_id: str, user: dict[str, Any] | None, products: list[Document]) -> None:
        writer = self._writer()
        if user is not None:
            archived_user = {k: v for k, v in user.items() if k != "avatarUrl"}
            archived_user.update(
                {
                    "avatarUrl": None,
                    "archivedAt": SERVER_TIMESTAMP,
                    "originalUid": user_id,
                    "deletionReason": "user_request",
                }
            )
            writer.set("archived_users", user_id, archived_user)
        for product in products:
            archived_product = {k: v for k, v in product.data.items() if k != "imageUrls"}
            archived_product.update({"imageUrls": [], "archivedAt": SERVER_TIMESTAMP})
            writer.set(archive_collection(user_id), product.id, archived_product)
        writer.finalize()

    def _delete_images(self, user: dict[str, Any], products: list[Document]) -> int:
        urls = []
        avatar = user.get("avatarUrl")
        if self.storage.is_managed_url(avatar):
            urls.append(avatar)
        for product in products:
            image_urls = Product.from_document(product).image_urls or []
            urls.extend(url for url in image_urls if self.storage.is_managed_url(url))
        return sum(1 for url in urls if self.storage.delete_url(url))

    def _delete_live_data(self, user_id: str, products: list[Document]) -> None:
        writer = self._writer()
        writer.delete("users", user_id)
        for product in products:
            writer.delete("products", product.id)
        writer.finalize()

    def _force_reject(self, txn: Transaction, exchange_id: str, user_id: str) -> bool:
        exchange = txn.get("exchanges", exchange_id)
        if not exchange.exists or exchange.get("status") not in OPEN_STATUSES:
            return False
        txn.update("exchanges", exchange_id, ExchangeService.force_reject_patch())
        requester_id = exchange.get("requesterId")
        other_user_id = exchange.get("ownerId") if requester_id == user_id else requester_id
        notification = NotificationService.build(
            other_user_id,
            user_id,
            NotificationType.OFFER_REJECTED,
            exchange_id,
            {
                "productName": exchange.get("productName") or "Unknown",
                "productId": exchange.get("productId") or "",
                "message": ACCOUNT_DELETED_MESSAGE,
            },
        )
        txn.set("notifications", self.store.new_id(), notification)
        return True

    def _reject_open_exchanges(self, user_id: str) -> int:
        open_exchanges = self.exchanges.open_exchanges_for_user(user_id)
        logger.info(f"[DELETE] Exchanges to reject: {len(open_exchanges)}")
        rejected = 0
        for exchange in open_exchanges:
            # the counterparty may have closed it since the query
            if self.store.transaction(partial(self._force_reject, exchange_id=exchange.id, user_id=user_id)):
                rejected += 1
            else:
                logger.info(f"[DELETE] Exchange {exchange.id} is no longer open, skipping")
        return rejected

    def delete_user_account(self, user_id: str) -> dict[str, Any]:
        """
        Delete an account and everything attached to it.

        Archives the profile and products, removes stored images, deletes
        the live documents, rejects the user's open exchanges and notifies
        each counterparty, and deletes the identity account last so a
        failure leaves the account usable for a retry. Every step can be
        re-run safely; nothing is rolled back. A retry after the profile
        was removed resumes from its archived copy.
        """
        logger.info(f"[DELETE] Starting deletion process for user: {user_id}")

        user_document = self.store.get("users", user_id)
        resuming = not user_document.exists
        if resuming:
            # an earlier attempt got past the live-data step
            user_document = self.store.get("archived_users", user_id)
            if not user_document.exists:
                raise NotFoundError("User profile not found")
            logger.info("[DELETE] Resuming from archived profile")
        user = user_document.data
        logger.info("[DELETE] User data fetched")

        step = "fetch_products"
        try:
            products = self.store.query("products", [("userId", "==", user_id)])
            logger.info(f"[DELETE] Products fetched: {len(products)}")

            step = "archive"
            self._archive(user_id, None if resuming else user, products)
            logger.info("[DELETE] Archive committed")

            step = "delete_images"
            deleted_images = self._delete_images(user, products)
            logger.info(f"[DELETE] Storage files removed: {deleted_images}")

            step = "delete_live_data"
            self._delete_live_data(user_id, products)
            logger.info("[DELETE] Live data deleted")

            step = "reject_exchanges"
            rejected = self._reject_open_exchanges(user_id)
            logger.info("[DELETE] Exchanges rejected")

            step = "delete_identity"
            self.identity.delete_user(user_id)
            logger.info("[DELETE] Identity account deleted. Process complete.")
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"[DELETE] Error deleting account for {user_id} at step {step}: {e}")
            raise InternalError(f"Failed to delete account ({step})") from e

        return {"success": True, "deletedProducts": len(products), "rejectedExchanges": rejected}

    def on_product_deleted(self, event: ChangeEvent) -> bool:
        """Trigger: keep an archived copy of every deleted product."""
        product = event.before
        product_id = event.document_id
        if not product:
            logger.warning(f"[ARCHIVE] No data associated with event for product: {product_id}")
            return False
        user_id = product.get("userId")
        if not user_id:
            logger.warning(f"[ARCHIVE] Product {product_id} has no userId, skipping archive.")
            return False

        archived = {k: v for k, v in product.items() if k != "imageUrls"}
        archived.update(
            {
                "imageUrls": [],
                "originalProductId": product_id,
                "archivedAt": SERVER_TIMESTAMP,
                "deletionReason": "product_deleted_trigger",
            }
        )
        try:
            self.store.set(archive_collection(user_id), product_id, archived)
        except Exception as e:
            logger.error(f"[ARCHIVE] Failed to archive product {product_id}: {e}")
            return False
        logger.info(f"[ARCHIVE] Archived deleted product {product_id} for user {user_id}")
        return True
