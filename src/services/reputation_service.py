"""Reputation aggregation triggered by review changes on exchanges."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any

from src.config import REPUTATION_WORKERS
from src.db.document_store import ChangeEvent, DocumentStore, Transaction
from src.models.exchanges import ExchangeStatus

logger = logging.getLogger(__name__)

BASE_REVIEW_POINTS = 15
RATING_BONUS = {5: 10, 4: 5}

# (minimum points, level name), highest first
LEVELS = [
    (501, "Master Grower"),
    (301, "Harvester"),
    (151, "Gardener"),
    (51, "Sprout"),
    (0, "Seed"),
]

REVIEW_FIELDS = ("rating", "comment", "createdAt")


def calculate_level(points: int) -> str:
    """Level name for a points total."""
    for minimum, name in LEVELS:
        if points >= minimum:
            return name
    return LEVELS[-1][1]


def points_for_rating(rating: int) -> int:
    return BASE_REVIEW_POINTS + RATING_BONUS.get(rating, 0)


def changed_reviewers(before: dict[str, Any] | None, after: dict[str, Any] | None) -> list[str]:
    """Reviewer ids whose review is new or differs in rating, comment or creation time."""
    before_reviews = (before or {}).get("reviews") or {}
    after_reviews = (after or {}).get("reviews") or {}
    changed = []
    for reviewer_id, review in after_reviews.items():
        previous = before_reviews.get(reviewer_id)
        if previous is None or any(previous.get(f) != review.get(f) for f in REVIEW_FIELDS):
            changed.append(reviewer_id)
    return changed


class ReputationService:
    def __init__(self, store: DocumentStore, max_workers: int = REPUTATION_WORKERS):
        self.store = store
        self.max_workers = max_workers

    def aggregate_reviews(self, user_id: str) -> tuple[int, int]:
        """
        Sum every review of ``user_id`` across completed exchanges.

        Rescans all completed exchanges so the result matches stored data no
        matter how many trigger deliveries were retried or coalesced.

        Returns:
            (total rating, review count)
        """
        documents = self.store.query("exchanges", [("status", "==", ExchangeStatus.COMPLETED.value)])
        total_rating = 0
        review_count = 0
        counted = set()
        for document in documents:
            for reviewer_id, review in (document.get("reviews") or {}).items():
                if review.get("reviewedUserId") != user_id:
                    continue
                key = (document.id, reviewer_id)
                if key in counted:
                    continue
                counted.add(key)
                total_rating += review.get("rating", 0)
                review_count += 1
        return total_rating, review_count

    def update_reputation(self, reviewed_user_id: str, review: dict[str, Any], is_new_review: bool) -> dict[str, Any] | None:
        total_rating, review_count = self.aggregate_reviews(reviewed_user_id)
        if review_count == 0:
            logger.info(f"No reviews found for user {reviewed_user_id}")
            return None

        points_to_add = points_for_rating(review.get("rating")) if is_new_review else 0

        def apply(txn: Transaction) -> dict[str, Any] | None:
            user = txn.get("users", reviewed_user_id)
            if not user.exists:
                return None
            new_points = (user.get("points") or 0) + points_to_add
            update = {
                "reputation": {
                    "averageRating": round(total_rating / review_count, 1),
                    "totalReviews": review_count,
                },
                "points": new_points,
                "level": calculate_level(new_points),
                "lastUpdated": datetime.now(timezone.utc).isoformat(),
            }
            txn.update("users", reviewed_user_id, update)
            return update

        update = self.store.transaction(apply)
        if update is None:
            logger.error(f"User {reviewed_user_id} not found")
            return None
        logger.info(
            f"Updated reputation for user {reviewed_user_id}: average={update['reputation']['averageRating']} "
            f"reviews={review_count} points={update['points']} level={update['level']} added={points_to_add}"
        )
        return update

    def _process_reviewer(self, reviewer_id: str, before_reviews: dict, after_reviews: dict) -> dict[str, Any] | None:
        review = after_reviews[reviewer_id]
        reviewed_user_id = review.get("reviewedUserId")
        if not reviewed_user_id:
            logger.error(f"No reviewedUserId found for review by {reviewer_id}")
            return None
        try:
            return self.update_reputation(reviewed_user_id, review, is_new_review=reviewer_id not in before_reviews)
        except Exception as e:
            logger.error(f"Error updating reputation for user {reviewed_user_id}: {e}")
            return None

    def on_exchange_updated(self, event: ChangeEvent) -> list[dict[str, Any] | None] | None:
        """Trigger: recompute the reputation of everyone who received a new or edited review."""
        reviewer_ids = changed_reviewers(event.before, event.after)
        if not reviewer_ids:
            logger.info(f"No new reviews detected on exchange {event.document_id}")
            return None

        logger.info(f"Processing {len(reviewer_ids)} new review(s) on exchange {event.document_id}")
        before_reviews = (event.before or {}).get("reviews") or {}
        after_reviews = (event.after or {}).get("reviews") or {}

        workers = max(1, min(self.max_workers, len(reviewer_ids)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(
                executor.map(lambda r: self._process_reviewer(r, before_reviews, after_reviews), reviewer_ids)
            )

        processed = sum(1 for r in results if r is not None)
        logger.info(f"Reputation update completed: processed={processed} failed={len(results) - processed}")
        return results

    def on_user_updated(self, event: ChangeEvent) -> bool:
        """Trigger: give a user zeroed reputation fields the first time none exist."""
        after = event.after or {}
        if any(field in after for field in ("reputation", "points", "level")):
            return False
        try:
            self.store.update(
                "users",
                event.document_id,
                {
                    "reputation": {"averageRating": 0, "totalReviews": 0},
                    "points": 0,
                    "level": calculate_level(0),
                    "lastUpdated": datetime.now(timezone.utc).isoformat(),
                },
            )
        except Exception as e:
            logger.error(f"Error initializing reputation for user {event.document_id}: {e}")
            return False
        logger.info(f"Initialized reputation for user {event.document_id}")
        return True
