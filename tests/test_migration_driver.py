# ==============================================
# Tests for MigrationDriver
# ==============================================

import logging
from datetime import datetime

import pytest
from bson import ObjectId

from review_reconcile.errors import ScanAbortedError
from review_reconcile.migration_driver import DriverPhase, MigrationDriver, RunMode, RunState
from review_reconcile.normalization.update_planner import INVALID_CREATED_AT_ERROR, QUARANTINE_ERROR
from review_reconcile.storage.batch_writer import BatchWriter

from conftest import COLLECTION


def make_driver(fake_mongo, mode=RunMode.COMMIT, **kwargs):
    return MigrationDriver(fake_mongo, COLLECTION, mode=mode, **kwargs)


class TestCommitRun:

    def test_counters(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        state = make_driver(fake_mongo).run()

        assert state.processed == 7
        assert state.quarantined == 1      # a02
        assert state.skipped == 1          # a04
        assert state.changed == 5
        assert state.recovered == 2        # a03, a07
        assert state.changed + state.skipped + state.quarantined == state.processed
        assert state.last_cursor == "a07"
        assert state.phase is DriverPhase.DONE

    def test_documents_are_repaired(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        make_driver(fake_mongo).run()

        a01 = fake_mongo.get("a01")
        assert isinstance(a01["createdAt"], datetime)
        assert a01["dishName"] == "Pad Thai"
        assert a01["media"] == {"photos": ["a.jpg"]}
        assert a01["isDeleted"] is False
        assert a01["schemaVersion"] == 2
        assert isinstance(a01["updatedAt"], datetime)

        a02 = fake_mongo.get("a02")
        assert a02["isDeleted"] is True
        assert a02["normalizeError"] == QUARANTINE_ERROR
        assert "media" not in a02

        a05 = fake_mongo.get("a05")
        assert a05["createdAt"] == "not-a-date"
        assert a05["normalizeError"] == INVALID_CREATED_AT_ERROR
        assert a05["dishName"] == "Pho"

        a06 = fake_mongo.get("a06")
        assert a06["media"]["photos"] == ["b.jpg"]
        assert isinstance(a06["createdAt"], datetime)

        a07 = fake_mongo.get("a07")
        assert a07["isDeleted"] is False
        assert "normalizeError" not in a07

    def test_canonical_review_is_not_written(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        make_driver(fake_mongo).run()
        assert fake_mongo.get("a04") == mixed_reviews[3]

    def test_media_photos_total_coverage(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        make_driver(fake_mongo).run()
        for review in fake_mongo.collections[COLLECTION].values():
            if review.get("normalizeError") == QUARANTINE_ERROR:
                continue
            assert isinstance(review["media"]["photos"], list)
            assert isinstance(review["isDeleted"], bool)
            assert review["schemaVersion"] == 2

    def test_quarantine_keeps_content(self, fake_mongo):
        original = {"_id": "q", "restaurantId": "r1", "dish": "Pho", "createdAt": "2024-01-01", "images": []}
        fake_mongo.seed([original])
        make_driver(fake_mongo).run()
        stored = fake_mongo.get("q")
        for key, value in original.items():
            assert stored[key] == value
        assert set(stored) - set(original) == {"isDeleted", "normalizeError", "schemaVersion", "updatedAt"}

    def test_second_run_is_a_no_op(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        make_driver(fake_mongo).run()
        commits_after_first = len(fake_mongo.commits)

        state = make_driver(fake_mongo).run()
        assert state.changed == 0
        assert state.skipped + state.quarantined == state.processed
        assert len(fake_mongo.commits) == commits_after_first

    def test_write_groups_respect_batch_size(self, fake_mongo):
        fake_mongo.seed([{"_id": f"id{i:02d}", "userId": "u", "restaurantId": "r"} for i in range(7)])
        make_driver(fake_mongo, batch_size=3, page_size=2).run()
        assert [len(group) for group in fake_mongo.commits] == [3, 3, 1]

    def test_resume_from_cursor(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        state = make_driver(fake_mongo).run(start_after="a04")
        assert state.processed == 3
        assert "schemaVersion" not in fake_mongo.get("a01")


class TestDryRun:

    def test_nothing_written(self, fake_mongo, mixed_reviews, caplog):
        fake_mongo.seed(mixed_reviews)
        with caplog.at_level(logging.INFO):
            state = make_driver(fake_mongo, mode=RunMode.DRY_RUN).run()
        assert fake_mongo.commit_attempts == 0
        assert state.changed == 5
        assert "[dry-run] a01 ->" in caplog.text
        assert fake_mongo.get("a01") == mixed_reviews[0]

    def test_progress_and_summary_logged(self, fake_mongo, mixed_reviews, caplog):
        fake_mongo.seed(mixed_reviews)
        with caplog.at_level(logging.INFO):
            make_driver(fake_mongo, mode=RunMode.DRY_RUN, progress_interval=3).run()
        assert caplog.text.count("[normalize] processed=") == 2
        assert "[normalize] done" in caplog.text
        assert "[quarantine] a02" in caplog.text
        assert "[recover] a03" in caplog.text


class TestAbort:

    def test_commit_failure_reports_cursor_before_failed_group(self, fake_mongo):
        fake_mongo.seed([{"_id": f"id{i}", "userId": "u", "restaurantId": "r"} for i in range(5)])
        fake_mongo.fail_commit_attempts = {2}
        driver = make_driver(fake_mongo, batch_size=2)

        with pytest.raises(ScanAbortedError) as excinfo:
            driver.run()

        # id2 and id3 were in the failed group, so the cursor stops at id1
        assert excinfo.value.last_cursor == "id1"
        assert excinfo.value.state.processed == 4
        assert fake_mongo.get("id1")["schemaVersion"] == 2
        assert "schemaVersion" not in fake_mongo.get("id2")

    def test_resume_from_reported_cursor_finishes_the_job(self, fake_mongo):
        fake_mongo.seed([{"_id": f"id{i}", "userId": "u", "restaurantId": "r"} for i in range(5)])
        fake_mongo.fail_commit_attempts = {2}
        with pytest.raises(ScanAbortedError) as excinfo:
            make_driver(fake_mongo, batch_size=2).run()

        state = make_driver(fake_mongo, batch_size=2).run(start_after=excinfo.value.last_cursor)
        assert state.processed == 3
        for review in fake_mongo.collections[COLLECTION].values():
            assert review["schemaVersion"] == 2

    def test_first_group_failure_falls_back_to_start(self, fake_mongo):
        fake_mongo.seed([{"_id": f"id{i}", "userId": "u", "restaurantId": "r"} for i in range(5)])
        fake_mongo.fail_commit_attempts = {1}
        with pytest.raises(ScanAbortedError) as excinfo:
            make_driver(fake_mongo, batch_size=2).run(start_after="id0")
        assert excinfo.value.last_cursor == "id0"

    def test_drain_failure_reports_last_committed(self, fake_mongo):
        fake_mongo.seed([{"_id": f"id{i}", "userId": "u", "restaurantId": "r"} for i in range(5)])
        fake_mongo.fail_commit_attempts = {3}
        with pytest.raises(ScanAbortedError) as excinfo:
            make_driver(fake_mongo, batch_size=2).run()
        assert excinfo.value.last_cursor == "id3"
        assert "schemaVersion" not in fake_mongo.get("id4")

    def test_read_failure_with_buffered_records(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        fake_mongo.fail_find_calls = {2}
        with pytest.raises(ScanAbortedError) as excinfo:
            make_driver(fake_mongo, batch_size=2, page_size=3).run()
        # a01 and a02 committed, a03 was still buffered
        assert excinfo.value.last_cursor == "a02"
        assert "schemaVersion" not in fake_mongo.get("a03")

    def test_read_failure_without_commits_restarts_from_beginning(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        fake_mongo.fail_find_calls = {2}
        with pytest.raises(ScanAbortedError) as excinfo:
            make_driver(fake_mongo, page_size=3).run()
        assert excinfo.value.last_cursor is None

    def test_read_failure_in_dry_run_reports_last_observed(self, fake_mongo, mixed_reviews):
        fake_mongo.seed(mixed_reviews)
        fake_mongo.fail_find_calls = {2}
        with pytest.raises(ScanAbortedError) as excinfo:
            make_driver(fake_mongo, mode=RunMode.DRY_RUN, page_size=3).run()
        assert excinfo.value.last_cursor == "a03"


class TestDocumentIds:

    def test_hex_string_ids_resume_and_commit(self, fake_mongo):
        hex_id = "5f1e2d3c4b5a69788796a5b4"
        fake_mongo.seed([
            {"_id": hex_id, "userId": "u", "restaurantId": "r"},
            {"_id": "zz-later", "userId": "u", "restaurantId": "r"},
        ])
        state = make_driver(fake_mongo).run(start_after=hex_id)
        assert state.processed == 1
        assert fake_mongo.get("zz-later")["schemaVersion"] == 2

        make_driver(fake_mongo).run()
        assert fake_mongo.get(hex_id)["schemaVersion"] == 2
        assert make_driver(fake_mongo).run().changed == 0

    def test_object_ids_are_written_as_stored(self, fake_mongo):
        ids = [ObjectId() for _ in range(3)]
        fake_mongo.seed([{"_id": oid, "userId": "u", "restaurantId": "r"} for oid in ids])

        state = make_driver(fake_mongo, batch_size=2).run(start_after=ids[0])

        assert state.processed == 2
        assert state.last_cursor == str(ids[2])
        assert fake_mongo.commits == [[ids[1], ids[2]]]
        assert "schemaVersion" not in fake_mongo.get(ids[0])

    def test_vanished_document_aborts_instead_of_counting_as_written(self, fake_mongo):
        fake_mongo.seed([{"_id": "id0", "userId": "u", "restaurantId": "r"}])
        driver = make_driver(fake_mongo)

        original_find = fake_mongo.find

        def find_then_delete(collection_name, query, sort=None, limit=None):
            documents = original_find(collection_name, query, sort=sort, limit=limit)
            fake_mongo.collections[COLLECTION].pop("id0", None)
            return documents

        fake_mongo.find = find_then_delete
        with pytest.raises(ScanAbortedError):
            driver.run()


def test_phase_follows_writer(fake_mongo):
    fake_mongo.seed([{"_id": "id0", "userId": "u", "restaurantId": "r"}])
    driver = make_driver(fake_mongo, batch_size=2)
    state = RunState(mode=RunMode.COMMIT)
    writer = BatchWriter(fake_mongo, COLLECTION, max_group_size=2, dry_run=False)
    document = {"_id": "id0", "userId": "u", "restaurantId": "r"}

    driver.process_document(document, state, writer)
    assert state.phase is DriverPhase.BUFFERING
    # Same record again merges into the buffered patch, no flush
    driver.process_document(document, state, writer)
    assert state.phase is DriverPhase.BUFFERING
    assert fake_mongo.commit_attempts == 0


def test_runs_do_not_share_state(fake_mongo, mixed_reviews):
    fake_mongo.seed(mixed_reviews)
    driver = make_driver(fake_mongo, mode=RunMode.DRY_RUN)
    first = driver.run()
    second = driver.run()
    assert first is not second
    assert first.processed == second.processed == 7
