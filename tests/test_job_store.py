#!/usr/bin/env python3
"""
Job Store and Record Tests

Tests for persisted job records including:
- Save/get/delete keyed by owner and kind
- JSON persistence across instances
- Tolerance of corrupt or partial state files
- Timestamp parsing helpers used by the records

Author: Revive Team
"""

import json
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.job_store import JobStore
from models.job_record import FailureReason, JobKind, JobRecord, JobState
from tests.conftest import START_TIME
from utils.time_utils import parse_timestamp, to_iso


def make_record(owner_id="alice", kind=JobKind.PHOTO, job_id="job_1", **kwargs):
    return JobRecord(
        job_id=job_id,
        kind=kind,
        owner_id=owner_id,
        input_ref="https://example.com/in.jpg",
        created_at=START_TIME,
        **kwargs,
    )


# ============================================================================
# JOB RECORD
# ============================================================================

class TestJobRecord:
    """Tests for the JobRecord model"""

    def test_terminal_states(self):
        """Test which states are terminal"""
        assert not JobState.STARTING.is_terminal
        assert not JobState.FINALIZING.is_terminal
        assert JobState.SUCCEEDED.is_terminal
        assert JobState.FAILED.is_terminal
        assert JobState.EXPIRED.is_terminal

    def test_state_ranks_are_ordered(self):
        """Test ranks follow the lifecycle"""
        ranks = [JobState.STARTING.rank, JobState.PROCESSING.rank, JobState.FINALIZING.rank]
        assert ranks == sorted(ranks)
        assert JobState.SUCCEEDED.rank > JobState.FINALIZING.rank

    def test_dict_round_trip_keeps_failure(self):
        """Test a failed record survives serialization"""
        record = make_record(
            state=JobState.FAILED,
            failure_reason=FailureReason.TIMEOUT,
            error_text="No result after 40 polls",
            poll_attempts=40,
            finished_at=START_TIME + timedelta(seconds=94),
        )

        restored = JobRecord.from_dict(json.loads(json.dumps(record.to_dict())))

        assert restored == record

    def test_elapsed_never_negative(self):
        """Test elapsed time is clamped at zero"""
        record = make_record()
        assert record.elapsed_seconds(START_TIME - timedelta(seconds=5)) == 0.0
        assert record.elapsed_seconds(START_TIME + timedelta(seconds=5)) == 5.0


# ============================================================================
# JOB STORE
# ============================================================================

class TestJobStore:
    """Tests for JobStore"""

    def test_one_record_per_owner_and_kind(self, store):
        """Test saving a new job replaces the owner's record of that kind"""
        store.save(make_record(job_id="job_1"))
        store.save(make_record(job_id="job_2"))
        store.save(make_record(kind=JobKind.VIDEO, job_id="vid_1"))

        assert store.get("alice", JobKind.PHOTO).job_id == "job_2"
        assert store.get("alice", JobKind.VIDEO).job_id == "vid_1"
        assert len(store.all()) == 2

    def test_lookup_by_job_id(self, store):
        """Test records can be found by provider job id"""
        store.save(make_record(owner_id="bob", job_id="pred_9"))

        assert store.get_by_job_id("pred_9").owner_id == "bob"
        assert store.get_by_job_id("missing") is None

    def test_delete(self, store):
        """Test delete removes and returns the record"""
        store.save(make_record())

        assert store.delete("alice", JobKind.PHOTO).job_id == "job_1"
        assert store.get("alice", JobKind.PHOTO) is None
        assert store.delete("alice", JobKind.PHOTO) is None

    def test_non_terminal(self, store):
        """Test only live jobs are listed for resume"""
        store.save(make_record(owner_id="a", state=JobState.PROCESSING))
        store.save(make_record(owner_id="b", state=JobState.SUCCEEDED))
        store.save(make_record(owner_id="c", state=JobState.EXPIRED))

        assert [r.owner_id for r in store.non_terminal()] == ["a"]

    def test_persists_across_instances(self, temp_dir):
        """Test records written by one store are loaded by the next"""
        path = temp_dir / "jobs" / "job_state.json"
        JobStore(str(path)).save(make_record(state=JobState.PROCESSING, poll_attempts=3))

        loaded = JobStore(str(path)).get("alice", JobKind.PHOTO)

        assert loaded.state == JobState.PROCESSING
        assert loaded.poll_attempts == 3
        assert loaded.created_at == START_TIME

    def test_corrupt_file_starts_empty(self, temp_dir):
        """Test an unreadable state file does not prevent startup"""
        path = temp_dir / "job_state.json"
        path.write_text("{truncated")

        assert JobStore(str(path)).all() == []

    def test_malformed_records_are_skipped(self, temp_dir):
        """Test bad entries are dropped and good ones kept"""
        path = temp_dir / "job_state.json"
        path.write_text(json.dumps({
            "records": [
                {"job_id": "x"},
                {**make_record(owner_id="bob").to_dict(), "kind": "hologram"},
                make_record().to_dict(),
            ]
        }))

        records = JobStore(str(path)).all()

        assert [r.owner_id for r in records] == ["alice"]


# ============================================================================
# TIME HELPERS
# ============================================================================

class TestParseTimestamp:
    """Tests for provider timestamp parsing"""

    @pytest.mark.parametrize("value", [
        "2024-03-01T12:00:00Z",
        "2024-03-01T12:00:00+00:00",
        "2024-03-01T14:00:00+02:00",
        1709294400000,
        datetime(2024, 3, 1, 12, 0),
    ])
    def test_shapes(self, value):
        """Test ISO strings, epoch milliseconds and datetimes all parse to UTC"""
        assert parse_timestamp(value) == datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value):
        """Test empty input gives None"""
        assert parse_timestamp(value) is None

    def test_to_iso(self):
        """Test serialization is UTC ISO-8601"""
        assert to_iso(START_TIME) == "2024-03-01T12:00:00+00:00"
        assert to_iso(None) is None
