"""
Tests for engine/engine.py: submit, retract and the query surface.

Covers:
  - One review per (reviewer, target): re-submitting updates in place
  - Aggregate stats follow every submit and retract
  - Invalid ratings and reviewers are rejected without side effects
  - Other failures surface as RecordError with the cause chained
  - Cached and recalculated stats agree
  - Custom fields, partial updates and reserved keys
  - Target registration and cascade destroy
  - Averages round halves away from zero
  - Concurrent writers on one (target, reviewer) pair share a single row
"""

from __future__ import annotations

import sqlite3
import threading

import pytest

from reviewable.db.connection import configure_connection, get_connection
from reviewable.db.migrations import run_migrations
from reviewable.db.repositories.target_repo import TargetRepository
from reviewable.db.schema import apply_schema
from reviewable.engine.engine import ReviewEngine, coerce_rating
from reviewable.engine.scale import build_scale
from reviewable.errors import InvalidReviewerError, InvalidReviewValueError, RecordError
from reviewable.models.reviewer import AnonymousRef, EntityRef
from reviewable.models.target import TargetRef


def _fail_with_full_disk(repo, *args, **kwargs):
    raise sqlite3.OperationalError("database or disk is full")


class TestReviewLifecycle:
    def test_first_submit_creates_review(self, engine, product, user7):
        review = engine.submit(product, {"by": user7, "rating": 3})

        assert review.review_id is not None
        assert review.rating == 3.0
        assert review.reviewer == user7
        assert review.target == product
        assert engine.total_reviews(product) == 1
        assert engine.average_rating(product) == 3.0

    def test_resubmit_updates_instead_of_duplicating(self, engine, product, user7):
        first = engine.submit(product, {"by": user7, "rating": 3})
        second = engine.submit(product, {"by": user7, "rating": 5})

        assert second.review_id == first.review_id
        assert second.rating == 5.0
        assert engine.total_reviews(product) == 1
        assert engine.average_rating(product) == 5.0

    def test_retract_removes_review(self, engine, product, user7):
        engine.submit(product, {"by": user7, "rating": 3})
        engine.submit(product, {"by": user7, "rating": 5})

        engine.retract(product, {"by": user7})

        assert engine.total_reviews(product) == 0
        assert engine.average_rating(product) == 0.0
        assert not engine.reviewed_by(product, {"by": user7})

    def test_resubmit_after_retract_creates_new_review(self, engine, product, user7):
        first = engine.submit(product, {"by": user7, "rating": 3})
        engine.retract(product, {"by": user7})

        again = engine.submit(product, {"by": user7, "rating": 4})

        assert again.review_id != first.review_id
        assert engine.total_reviews(product) == 1
        assert engine.average_rating(product) == 4.0

    def test_out_of_scale_rating_leaves_stats_unchanged(self, engine, product, user7):
        engine.submit(product, {"by": user7, "rating": 3})

        with pytest.raises(InvalidReviewValueError) as exc_info:
            engine.submit(product, {"by": user7, "rating": 6.0})

        assert exc_info.value.value == 6.0
        assert exc_info.value.scale == (1.0, 2.0, 3.0, 4.0, 5.0)
        assert engine.total_reviews(product) == 1
        assert engine.average_rating(product) == 3.0
        assert engine.review_by(product, {"by": user7}).rating == 3.0

    def test_out_of_scale_first_rating_creates_nothing(self, engine, product, user7):
        with pytest.raises(InvalidReviewValueError):
            engine.submit(product, {"by": user7, "rating": 0})

        assert engine.total_reviews(product) == 0
        assert engine.reviews_of(product) == []

    def test_multiple_reviewers_average(self, engine, product, user7, user8):
        engine.submit(product, {"by": user7, "rating": 2})
        engine.submit(product, {"user": user8, "rating": 5})

        assert engine.total_reviews(product) == 2
        assert engine.average_rating(product) == 3.5
        assert engine.is_reviewed(product)

    def test_text_only_review_counts_but_does_not_average(self, engine, product, user7, user8):
        engine.submit(product, {"by": user7, "rating": 4})
        engine.submit(product, {"by": user8, "body": "Haven't decided."})

        assert engine.total_reviews(product) == 2
        assert engine.average_rating(product) == 4.0


class TestRatingValues:
    def test_numeric_string_coerced(self, engine, product, user7):
        assert engine.submit(product, {"by": user7, "rating": "4"}).rating == 4.0

    def test_blank_rating_is_no_rating(self, engine, product, user7):
        assert engine.submit(product, {"by": user7, "rating": ""}).rating is None

    @pytest.mark.parametrize("bad", ["four", True, [4]])
    def test_non_numeric_rating_rejected(self, engine, product, user7, bad):
        with pytest.raises(InvalidReviewValueError):
            engine.submit(product, {"by": user7, "rating": bad})

    def test_half_step_scale(self, engine, user7):
        photo = engine.register_target("photo", 1)
        engine.submit(photo, {"by": user7, "rating": 4.5})
        with pytest.raises(InvalidReviewValueError):
            engine.submit(photo, {"by": user7, "rating": 4.25})

    def test_coerce_rating_error_lists_scale(self):
        scale = build_scale([1, 2, 3])
        with pytest.raises(InvalidReviewValueError, match=r"\[1.0, 2.0, 3.0\]"):
            coerce_rating("x", scale)

    def test_rating_scale_and_precision(self, engine, product):
        assert engine.rating_scale(product).values == (1.0, 2.0, 3.0, 4.0, 5.0)
        assert engine.rating_precision("photo") == 2
        assert engine.valid_rating(product, [1, 5])
        assert not engine.valid_rating(product, 5.5)


class TestReviewerErrors:
    def test_missing_reviewer(self, engine, product):
        with pytest.raises(InvalidReviewerError, match="can't be nil"):
            engine.submit(product, {})

    def test_ip_rejected_when_not_accepted(self, engine, product):
        with pytest.raises(InvalidReviewerError, match="IP is disabled"):
            engine.submit(product, {"ip": "10.0.0.1", "rating": 3})
        assert engine.total_reviews(product) == 0

    def test_wrong_reviewer_type(self, engine, product, account3):
        with pytest.raises(InvalidReviewerError):
            engine.submit(product, {"by": account3, "rating": 3})

    def test_retract_propagates_reviewer_error(self, engine, product):
        with pytest.raises(InvalidReviewerError):
            engine.retract(product, {"ip": "10.0.0.1"})


class TestRecordErrors:
    def test_retract_without_review(self, engine, product, user7):
        with pytest.raises(RecordError, match="Could not un-review") as exc_info:
            engine.retract(product, {"by": user7})

        assert exc_info.value.target == product
        assert exc_info.value.reviewer == user7
        assert isinstance(exc_info.value.__cause__, LookupError)

    def test_submit_to_unregistered_target(self, engine, user7):
        ghost = TargetRef(target_type="product", target_id="404")
        with pytest.raises(RecordError, match="Could not create/update review"):
            engine.submit(ghost, {"by": user7, "rating": 3})

    def test_submit_to_unknown_type(self, engine, user7):
        gadget = TargetRef(target_type="gadget", target_id="1")
        with pytest.raises(RecordError) as exc_info:
            engine.submit(gadget, {"by": user7, "rating": 3})

        assert exc_info.value.reviewer is None
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_cache_refresh_failure_rolls_back_review(
        self, engine, in_memory_db, product, user7, monkeypatch
    ):
        in_memory_db.commit()
        failure = sqlite3.OperationalError("disk I/O error")

        def fail(repo, *args, **kwargs):
            raise failure

        monkeypatch.setattr(TargetRepository, "update_cache", fail)

        with pytest.raises(RecordError) as exc_info:
            engine.submit(product, {"by": user7, "rating": 4})

        assert exc_info.value.__cause__ is failure
        assert not in_memory_db.in_transaction
        assert engine.reviews.count(product) == 0
        assert engine.targets.get(product).cached_total_reviews == 0

    def test_failure_inside_open_transaction_keeps_earlier_writes(
        self, engine, in_memory_db, product, user7, monkeypatch
    ):
        engine.register_target("product", 2)
        assert in_memory_db.in_transaction
        monkeypatch.setattr(TargetRepository, "update_cache", _fail_with_full_disk)

        with pytest.raises(RecordError):
            engine.submit(product, {"by": user7, "rating": 4})

        assert engine.reviews.count(product) == 0
        assert engine.targets.exists(TargetRef(target_type="product", target_id="2"))


class TestAnonymousReviews:
    def test_ip_reviews_are_idempotent_per_address(self, engine, post):
        engine.submit(post, {"ip": "10.0.0.1", "rating": 2})
        engine.submit(post, {"ip": " 10.0.0.1", "rating": 4})
        engine.submit(post, {"ip": "10.0.0.2", "rating": 5})

        assert engine.total_reviews(post) == 2
        assert engine.average_rating(post) == 4.5

    def test_ip_review_is_anonymous(self, engine, post):
        review = engine.submit(post, {"ip": "10.0.0.1", "rating": 2})
        assert review.is_anonymous
        assert review.reviewer == AnonymousRef(ip="10.0.0.1")

    def test_ip_and_user_are_distinct_reviewers(self, engine, post, user7):
        engine.submit(post, {"ip": "10.0.0.1", "rating": 1})
        engine.submit(post, {"by": user7, "rating": 5})

        assert engine.total_reviews(post) == 2
        assert engine.reviewers(post) == [AnonymousRef(ip="10.0.0.1"), user7]


class TestCachedStats:
    def test_cached_and_recalculated_agree(self, engine, product, user7, user8):
        third = engine.register_entity("user", 9)
        engine.submit(product, {"by": user7, "rating": 1})
        engine.submit(product, {"by": user8, "rating": 4})
        engine.submit(product, {"by": third, "rating": 4})
        engine.submit(product, {"by": user7, "rating": 2})
        engine.retract(product, {"by": user8})

        cached = engine.stats(product)
        live = engine.stats(product, recalculate=True)

        assert cached == live
        assert cached.total_reviews == 2
        assert cached.average_rating == 3.0

    def test_cache_row_follows_mutations(self, engine, product, user7):
        engine.submit(product, {"by": user7, "rating": 5})
        row = engine.targets.get(product)
        assert (row.cached_total_reviews, row.cached_average_rating) == (1, 5.0)

        engine.retract(product, {"by": user7})
        row = engine.targets.get(product)
        assert (row.cached_total_reviews, row.cached_average_rating) == (0, 0.0)

    def test_uncached_type_computes_live(self, engine, post, user7):
        engine.submit(post, {"by": user7, "rating": 3})
        assert engine.total_reviews(post) == 1
        assert engine.average_rating(post) == 3.0
        assert engine.targets.get(post).cached_total_reviews is None


class TestReviewFields:
    def test_partial_update_keeps_other_fields(self, engine, product, user7):
        engine.submit(product, {"by": user7, "rating": 3, "body": "Fine."})
        review = engine.submit(product, {"by": user7, "body": "Better than I thought."})

        assert review.rating == 3.0
        assert review.body == "Better than I thought."

    def test_custom_fields_merge(self, engine, product, user7):
        engine.submit(product, {"by": user7, "rating": 2, "reviewer_mood": "angry"})
        review = engine.submit(product, {"by": user7, "rating": 4, "verified": True})

        assert review.extra == {"reviewer_mood": "angry", "verified": True}

    def test_reserved_fields_ignored(self, engine, product, user7):
        review = engine.submit(
            product,
            {
                "by": user7,
                "rating": 3,
                "target_id": "999",
                "review_id": 12345,
                "reviewer_id": "other",
            },
        )

        assert review.target == product
        assert review.review_id != 12345
        assert review.reviewer == user7
        assert review.extra == {}

    def test_timestamps_set(self, engine, product, user7):
        review = engine.submit(product, {"by": user7, "rating": 3})
        assert review.created_at is not None
        assert review.reviewed_at == review.created_at
        assert review.updated_at >= review.created_at


class TestQueries:
    def test_average_rating_by(self, engine, product, user7, user8):
        engine.submit(product, {"by": user7, "rating": 2})
        engine.submit(product, {"by": user8, "rating": 5})

        assert engine.average_rating_by(product, {"by": user7}) == 2.0
        assert engine.average_rating_by(product, {"by": user8}) == 5.0

    def test_average_rating_by_without_review(self, engine, product, user7):
        assert engine.average_rating_by(product, {"by": user7}) == 0.0

    def test_review_by_and_reviewed_by(self, engine, product, user7, user8):
        engine.submit(product, {"by": user7, "rating": 2})

        assert engine.reviewed_by(product, {"by": user7})
        assert not engine.reviewed_by(product, {"by": user8})
        assert engine.review_by(product, {"by": user8}) is None

    def test_reviewables_by(self, engine, product, post, user7):
        engine.submit(product, {"by": user7, "rating": 4})
        engine.submit(post, {"by": user7, "rating": 1})

        assert engine.reviewables_by(user7) == [product, post]

    def test_reviews_of_in_order(self, engine, product, user7, user8):
        engine.submit(product, {"by": user7, "rating": 4})
        engine.submit(product, {"by": user8, "rating": 1})

        assert [r.reviewer for r in engine.reviews_of(product)] == [user7, user8]

    def test_not_reviewed(self, engine, product):
        assert not engine.is_reviewed(product)

    def test_reviewed_targets(self, engine, product, user7):
        engine.register_target("product", 2)
        third = engine.register_target("product", 3)
        engine.submit(product, {"by": user7, "rating": 4})
        engine.submit(third, {"by": user7, "rating": 2})

        assert engine.reviewed_targets(" Product ") == [product, third]
        assert engine.reviewed_targets("photo") == []

    def test_reviewed_targets_unknown_type(self, engine):
        with pytest.raises(KeyError):
            engine.reviewed_targets("gadget")


class TestTargets:
    def test_register_target_is_idempotent(self, engine, product, user7):
        engine.submit(product, {"by": user7, "rating": 4})

        again = engine.register_target("product", 1)

        assert again == product
        assert engine.total_reviews(product) == 1
        (n,) = engine.conn.execute("SELECT COUNT(*) FROM reviewable_targets;").fetchone()
        assert n == 1

    def test_register_unknown_type(self, engine):
        with pytest.raises(KeyError):
            engine.register_target("gadget", 1)

    def test_destroy_target_cascades(self, engine, product, user7, user8):
        engine.submit(product, {"by": user7, "rating": 4})
        engine.submit(product, {"by": user8, "rating": 2})

        assert engine.destroy_target(product)

        assert engine.targets.get(product) is None
        assert engine.reviews.count(product) == 0
        assert engine.reviewables_by(user7) == []

    def test_destroy_missing_target(self, engine):
        assert not engine.destroy_target(TargetRef(target_type="product", target_id="404"))

    def test_register_entity_keeps_display_name(self, engine):
        engine.register_entity("user", 1, display_name="Ada")
        ref = engine.register_entity("user", 1)

        assert ref == EntityRef(entity_type="user", entity_id="1")
        assert engine.entities.get(ref).display_name == "Ada"


class TestAverageRounding:
    def test_half_rounds_up_in_cache_and_live(self, engine, product, user7, user8):
        ratings = {user7: 1, user8: 2}
        ratings[engine.register_entity("user", 9)] = 3
        ratings[engine.register_entity("user", 10)] = 3
        for reviewer, rating in ratings.items():
            engine.submit(product, {"by": reviewer, "rating": rating})

        assert engine.average_rating(product) == 2.3
        assert engine.average_rating(product, recalculate=True) == 2.3
        assert engine.targets.get(product).cached_average_rating == 2.3


# ── Concurrent writers ────────────────────────────────────────────────────────

@pytest.fixture
def db_file(tmp_path, registry) -> str:
    """A WAL database file with product#1 and user#7 registered and committed."""
    path = str(tmp_path / "reviews.db")
    with get_connection(path) as conn:
        apply_schema(conn)
        run_migrations(conn)
        setup = ReviewEngine(conn, registry)
        setup.register_target("product", 1)
        setup.register_entity("user", 7)
    return path


def _open(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path, timeout=5, check_same_thread=False)
    return configure_connection(conn)


class TestConcurrentWriters:
    PRODUCT = TargetRef(target_type="product", target_id="1")
    USER_7 = EntityRef(entity_type="user", entity_id="7")

    def test_waiting_writer_merges_into_committed_review(self, db_file, registry):
        conn_a, conn_b = _open(db_file), _open(db_file)
        try:
            engine_a = ReviewEngine(conn_a, registry)
            engine_b = ReviewEngine(conn_b, registry)

            # B holds the write lock with its review not yet committed.
            conn_b.execute("BEGIN IMMEDIATE;")
            engine_b.submit(self.PRODUCT, {"by": self.USER_7, "rating": 2, "source": "b"})

            timer = threading.Timer(0.2, conn_b.commit)
            timer.start()
            review = engine_a.submit(
                self.PRODUCT, {"by": self.USER_7, "rating": 5, "device": "a"}
            )
            timer.join()

            assert review.rating == 5.0
            assert review.extra == {"source": "b", "device": "a"}
            assert engine_a.reviews.count(self.PRODUCT) == 1
            target = engine_a.targets.get(self.PRODUCT)
            assert target.cached_total_reviews == 1
            assert target.cached_average_rating == 5.0
        finally:
            conn_a.close()
            conn_b.close()

    def test_threads_submitting_same_pair_keep_one_row(self, db_file, registry):
        errors: list[Exception] = []
        start = threading.Barrier(2)

        def worker(rating: int) -> None:
            conn = _open(db_file)
            try:
                engine = ReviewEngine(conn, registry)
                start.wait()
                for _ in range(10):
                    engine.submit(self.PRODUCT, {"by": self.USER_7, "rating": rating})
            except Exception as exc:
                errors.append(exc)
            finally:
                conn.close()

        threads = [threading.Thread(target=worker, args=(r,)) for r in (2, 4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        conn = _open(db_file)
        try:
            engine = ReviewEngine(conn, registry)
            assert engine.reviews.count(self.PRODUCT) == 1
            assert engine.total_reviews(self.PRODUCT) == 1
            assert engine.average_rating(self.PRODUCT) in (2.0, 4.0)
            assert engine.average_rating(self.PRODUCT, recalculate=True) == (
                engine.average_rating(self.PRODUCT)
            )
        finally:
            conn.close()
