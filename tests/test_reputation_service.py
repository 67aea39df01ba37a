"""Tests for ReputationService and the level table."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from src.db.document_store import ChangeEvent
from src.services.reputation_service import (
    ReputationService,
    calculate_level,
    changed_reviewers,
    points_for_rating,
)


class TestLevels:
    @pytest.mark.parametrize(
        "points,level",
        [
            (0, "Seed"),
            (50, "Seed"),
            (51, "Sprout"),
            (150, "Sprout"),
            (151, "Gardener"),
            (300, "Gardener"),
            (301, "Harvester"),
            (500, "Harvester"),
            (501, "Master Grower"),
            (10_000, "Master Grower"),
        ],
    )
    def test_calculate_level(self, points, level):
        """Test level boundaries."""
        assert calculate_level(points) == level

    def test_levels_never_decrease(self):
        """Test more points never give a lower level."""
        order = ["Seed", "Sprout", "Gardener", "Harvester", "Master Grower"]
        ranks = [order.index(calculate_level(points)) for points in range(0, 700)]
        assert ranks == sorted(ranks)

    @pytest.mark.parametrize("rating,points", [(5, 25), (4, 20), (3, 15), (2, 15), (1, 15)])
    def test_points_for_rating(self, rating, points):
        """Test points awarded per review."""
        assert points_for_rating(rating) == points


class TestChangedReviewers:
    def test_new_review(self):
        after = {"reviews": {"bob": {"rating": 5, "comment": "", "createdAt": 1}}}
        assert changed_reviewers({}, after) == ["bob"]

    def test_unchanged_review(self):
        reviews = {"bob": {"rating": 5, "comment": "Great", "createdAt": 1}}
        assert changed_reviewers({"reviews": reviews}, {"reviews": dict(reviews), "status": "completed"}) == []

    def test_edited_comment(self):
        before = {"reviews": {"bob": {"rating": 5, "comment": "Great", "createdAt": 1}}}
        after = {"reviews": {"bob": {"rating": 5, "comment": "Great!!", "createdAt": 1}}}
        assert changed_reviewers(before, after) == ["bob"]

    def test_missing_images(self):
        """Test events without reviews or without a before image."""
        assert changed_reviewers(None, {"status": "accepted"}) == []
        assert changed_reviewers(None, None) == []


class TestReputationService:
    @pytest.fixture
    def exchange_service(self, context):
        return context.exchanges

    @pytest.fixture
    def complete_exchange(self, exchange_service, users):
        def complete(product_id):
            exchange_id = exchange_service.create_offer(product_id, f"Product {product_id}", "bob", "alice", {"type": "chat"})
            exchange_service.update_status(exchange_id, "accepted", "alice")
            exchange_service.update_status(exchange_id, "completed", "bob")
            return exchange_id

        return complete

    def test_first_review_awards_points(self, exchange_service, store, complete_exchange):
        """Test a five star review gives the reviewed user 25 points."""
        exchange_id = complete_exchange("P001")

        exchange_service.submit_review(exchange_id, "bob", 5, "Great!")

        alice = store.get("users", "alice")
        assert alice.get("points") == 25
        assert alice.get("level") == "Seed"
        assert alice.get("reputation") == {"averageRating": 5.0, "totalReviews": 1}
        assert alice.get("lastUpdated") is not None
        assert store.get("users", "bob").get("points") is None

    def test_reviews_across_exchanges(self, exchange_service, store, complete_exchange):
        """Test reviews on two exchanges both count towards the total."""
        first = complete_exchange("P001")
        second = complete_exchange("P002")

        exchange_service.submit_review(first, "bob", 5, "Great!")
        exchange_service.submit_review(second, "bob", 4, "Good")

        alice = store.get("users", "alice")
        assert alice.get("points") == 45
        assert alice.get("reputation") == {"averageRating": 4.5, "totalReviews": 2}

    def test_both_parties_review(self, exchange_service, store, complete_exchange):
        """Test each party's review updates the other party."""
        exchange_id = complete_exchange("P001")

        exchange_service.submit_review(exchange_id, "bob", 5)
        exchange_service.submit_review(exchange_id, "alice", 3)

        assert store.get("users", "alice").get("points") == 25
        assert store.get("users", "bob").get("points") == 15
        assert store.get("users", "bob").get("reputation") == {"averageRating": 3.0, "totalReviews": 1}

    def test_editing_comment_keeps_points(self, exchange_service, store, complete_exchange):
        """Test editing only the comment leaves points and reputation unchanged."""
        exchange_id = complete_exchange("P001")
        exchange_service.submit_review(exchange_id, "bob", 5, "Great!")

        exchange_service.submit_review(exchange_id, "bob", 5, "Great, thanks again!")

        alice = store.get("users", "alice")
        assert alice.get("points") == 25
        assert alice.get("reputation") == {"averageRating": 5.0, "totalReviews": 1}

    def test_editing_rating_updates_average_only(self, exchange_service, store, complete_exchange):
        """Test a changed rating is reflected in the average without awarding points."""
        first = complete_exchange("P001")
        second = complete_exchange("P002")
        exchange_service.submit_review(first, "bob", 5)
        exchange_service.submit_review(second, "bob", 4)

        exchange_service.submit_review(first, "bob", 2)

        alice = store.get("users", "alice")
        assert alice.get("points") == 45
        assert alice.get("reputation") == {"averageRating": 3.0, "totalReviews": 2}

    def test_aggregate_reviews(self, context, exchange_service, complete_exchange):
        """Test aggregation counts each (exchange, reviewer) pair once."""
        first = complete_exchange("P001")
        second = complete_exchange("P002")
        exchange_service.submit_review(first, "bob", 5)
        exchange_service.submit_review(first, "bob", 4)
        exchange_service.submit_review(second, "bob", 1)
        exchange_service.submit_review(second, "alice", 5)

        assert context.reputation.aggregate_reviews("alice") == (5, 2)
        assert context.reputation.aggregate_reviews("bob") == (5, 1)
        assert context.reputation.aggregate_reviews("carol") == (0, 0)

    def test_redelivered_event_recomputes_same_average(self, context, store, exchange_service, complete_exchange):
        """Test replaying a trigger keeps the aggregate consistent with stored reviews."""
        exchange_id = complete_exchange("P001")
        exchange_service.submit_review(exchange_id, "bob", 4)
        after = store.get("exchanges", exchange_id).data
        event = ChangeEvent("exchanges", exchange_id, "updated", {"reviews": {}}, after)

        context.reputation.on_exchange_updated(event)

        assert store.get("users", "alice").get("reputation") == {"averageRating": 4.0, "totalReviews": 1}

    def test_status_change_without_reviews(self, context, store, exchange_service, complete_exchange):
        """Test updates without review changes do nothing."""
        exchange_id = complete_exchange("P001")
        data = store.get("exchanges", exchange_id).data
        event = ChangeEvent("exchanges", exchange_id, "updated", data, data)

        assert context.reputation.on_exchange_updated(event) is None
        assert store.get("users", "alice").get("points") is None

    def test_missing_reviewed_user(self, store):
        """Test a review for a user without profile is skipped."""
        service = ReputationService(store)
        store.set(
            "exchanges",
            "E1",
            {"status": "completed", "reviews": {"bob": {"rating": 5, "reviewedUserId": "ghost", "reviewerId": "bob"}}},
        )

        assert service.update_reputation("ghost", {"rating": 5}, is_new_review=True) is None
        assert not store.get("users", "ghost").exists

    def test_concurrent_awards_are_not_lost(self, store):
        """Test parallel point awards for the same user all land."""
        service = ReputationService(store)
        store.set("users", "alice", {"name": "Alice", "points": 0})
        store.set(
            "exchanges",
            "E1",
            {"status": "completed", "reviews": {"bob": {"rating": 5, "reviewedUserId": "alice", "reviewerId": "bob"}}},
        )

        threads = [
            threading.Thread(target=service.update_reputation, args=("alice", {"rating": 5}, True)) for _ in range(20)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        alice = store.get("users", "alice")
        assert alice.get("points") == 500
        assert alice.get("level") == "Harvester"

    def test_failure_isolated_per_reviewer(self):
        """Test one failing reviewer update does not stop the other."""
        service = ReputationService(MagicMock(), max_workers=2)
        after = {
            "reviews": {
                "alice": {"rating": 5, "reviewedUserId": "bob", "createdAt": 1},
                "bob": {"rating": 4, "reviewedUserId": "alice", "createdAt": 1},
            }
        }
        event = ChangeEvent("exchanges", "E1", "updated", {"reviews": {}}, after)

        def update(user_id, review, is_new_review):
            if user_id == "bob":
                raise RuntimeError("write failed")
            return {"points": 20}

        with patch.object(service, "update_reputation", side_effect=update):
            results = service.on_exchange_updated(event)

        assert sorted(results, key=lambda r: r is None) == [{"points": 20}, None]

    def test_review_without_reviewed_user(self):
        """Test malformed reviews are skipped."""
        service = ReputationService(MagicMock())
        event = ChangeEvent("exchanges", "E1", "updated", {}, {"reviews": {"bob": {"rating": 5}}})

        with patch.object(service, "update_reputation") as mock_update:
            assert service.on_exchange_updated(event) == [None]
            mock_update.assert_not_called()


class TestReputationInitialization:
    def test_initializes_missing_fields(self, context, store):
        """Test a profile update without reputation fields gets zeroed ones."""
        store.set("users", "carol", {"name": "Carol"})

        store.update("users", "carol", {"name": "Carol G."})

        carol = store.get("users", "carol")
        assert carol.get("reputation") == {"averageRating": 0, "totalReviews": 0}
        assert carol.get("points") == 0
        assert carol.get("level") == "Seed"

    def test_existing_fields_untouched(self, context, store):
        """Test users with any reputation field are left alone."""
        store.set("users", "dave", {"name": "Dave", "points": 120})

        store.update("users", "dave", {"name": "David"})

        dave = store.get("users", "dave")
        assert dave.get("points") == 120
        assert dave.get("reputation") is None
        assert dave.get("level") is None

    def test_handler_reports_no_write(self, context):
        """Test the handler returns False when nothing is written."""
        event = ChangeEvent("users", "erin", "updated", {}, {"level": "Seed"})

        assert context.reputation.on_user_updated(event) is False
