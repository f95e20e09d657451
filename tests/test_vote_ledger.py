"""Tests for the vote ledger: toggling, counting, idempotency and races."""

import threading

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from contest_ledger.contest.enums import SubmissionStatus
from contest_ledger.contest.services import VoteLedger, _VoteRowChanged
from contest_ledger.db.models import VoteModel, VoteReceiptModel
from contest_ledger.errors import (
    ConflictAlreadyExists,
    ContestClosed,
    NotFound,
    ValidationFailed,
)
from tests.conftest import FUTURE_DEADLINE, add_submission


@pytest.fixture
def work(db_session):
    return add_submission(db_session, "author-1")


@pytest.fixture
def ledger(db_session, clock) -> VoteLedger:
    return VoteLedger(db_session, deadline=FUTURE_DEADLINE, clock=clock)


def _rows(db_session, voter_id, work_id):
    return (
        db_session.query(VoteModel)
        .filter(VoteModel.voter_id == voter_id)
        .filter(VoteModel.work_id == work_id)
        .count()
    )


class TestToggle:
    def test_vote_then_retract_then_other_voter(self, ledger, work):
        first = ledger.toggle("voter-v", work.id)
        assert (first.is_voted, first.vote_count) == (True, 1)

        second = ledger.toggle("voter-v", work.id)
        assert (second.is_voted, second.vote_count) == (False, 0)

        third = ledger.toggle("voter-u", work.id)
        assert (third.is_voted, third.vote_count) == (True, 1)

    def test_count_reflects_other_voters(self, ledger, work, db_session, clock):
        db_session.add(VoteModel(voter_id="someone-else", work_id=work.id, created_at=clock.now))
        db_session.commit()

        result = ledger.toggle("voter-v", work.id)

        assert result.vote_count == 2
        assert result.vote_count == ledger.count_votes(work.id)

    def test_at_most_one_row_per_pair(self, ledger, work, db_session):
        for _ in range(5):
            ledger.toggle("voter-v", work.id)

        assert _rows(db_session, "voter-v", work.id) == 1

    def test_response_shape(self, ledger, work):
        assert ledger.toggle("voter-v", work.id).to_response() == {"isVoted": True, "voteCount": 1}

    def test_closed_contest(self, db_session, clock, work):
        ledger = VoteLedger(db_session, deadline=clock.now, clock=clock)

        with pytest.raises(ContestClosed):
            ledger.toggle("voter-v", work.id)

        assert _rows(db_session, "voter-v", work.id) == 0

    @pytest.mark.parametrize("status", [SubmissionStatus.PENDING, SubmissionStatus.REJECTED])
    def test_only_approved_works_accept_votes(self, ledger, db_session, status):
        hidden = add_submission(db_session, "author-2", status=status)

        with pytest.raises(NotFound):
            ledger.toggle("voter-v", hidden.id)

    def test_unknown_work(self, ledger):
        with pytest.raises(NotFound):
            ledger.toggle("voter-v", "missing")


class TestIdempotencyKey:
    def test_replay_returns_recorded_outcome_without_flipping(self, ledger, work, db_session):
        first = ledger.toggle("voter-v", work.id, idempotency_key="click-1")
        replay = ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        assert first.is_voted is True
        assert replay.is_voted is True
        assert replay.vote_count == 1
        assert _rows(db_session, "voter-v", work.id) == 1

    def test_replay_reports_fresh_count(self, ledger, work, db_session, clock):
        ledger.toggle("voter-v", work.id, idempotency_key="click-1")
        db_session.add(VoteModel(voter_id="voter-u", work_id=work.id, created_at=clock.now))
        db_session.commit()

        replay = ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        assert replay.vote_count == 2

    def test_new_key_flips_again(self, ledger, work):
        ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        result = ledger.toggle("voter-v", work.id, idempotency_key="click-2")

        assert result.is_voted is False

    def test_key_reused_for_another_work(self, ledger, work, db_session):
        other = add_submission(db_session, "author-2")
        ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        with pytest.raises(ValidationFailed) as exc_info:
            ledger.toggle("voter-v", other.id, idempotency_key="click-1")

        assert exc_info.value.details["rule"] == "idempotency_key_reused"

    def test_keys_are_scoped_per_voter(self, ledger, work):
        ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        result = ledger.toggle("voter-u", work.id, idempotency_key="click-1")

        assert (result.is_voted, result.vote_count) == (True, 2)

    def test_receipt_written_with_flip(self, ledger, work, db_session):
        ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        receipt = db_session.query(VoteReceiptModel).one()
        assert (receipt.voter_id, receipt.work_id, receipt.is_voted) == ("voter-v", work.id, True)


class TestConflictResolution:
    def test_concurrent_insert_is_re_evaluated(self, file_engine, clock):
        factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        setup = factory()
        work_id = add_submission(setup, "author-1").id
        setup.close()

        db = factory()
        ledger = VoteLedger(db, deadline=FUTURE_DEADLINE, clock=clock)
        original_flip = ledger._flip
        calls = []

        def racing_flip(voter_id, work_id):
            calls.append(1)
            if len(calls) == 1:
                # Another request for the same pair commits first.
                other = factory()
                other.add(VoteModel(voter_id=voter_id, work_id=work_id, created_at=clock.now))
                other.commit()
                other.close()
                raise IntegrityError("INSERT INTO votes", {}, Exception("UNIQUE constraint failed"))
            return original_flip(voter_id, work_id)

        ledger._flip = racing_flip

        result = ledger.toggle("voter-v", work_id)

        # Two toggles applied in total: the concurrent cast and our retract.
        assert result.is_voted is False
        assert result.vote_count == 0
        assert len(calls) == 2
        db.close()

    def test_exhausted_attempts_raise_conflict(self, ledger, work, monkeypatch):
        calls = []

        def always_changed(voter_id, work_id):
            calls.append(1)
            raise _VoteRowChanged()

        monkeypatch.setattr(ledger, "_flip", always_changed)

        with pytest.raises(ConflictAlreadyExists) as exc_info:
            ledger.toggle("voter-v", work.id)

        assert "already in desired state" in exc_info.value.message
        assert len(calls) == ledger.max_attempts

    def test_conflict_with_key_replays_winner(self, ledger, work, db_session, clock, monkeypatch):
        original_flip = ledger._flip

        def racing_flip(voter_id, work_id):
            monkeypatch.setattr(ledger, "_flip", original_flip)
            # A retry of the same request (same key) won the race.
            db_session.add(VoteModel(voter_id=voter_id, work_id=work_id, created_at=clock.now))
            db_session.add(
                VoteReceiptModel(
                    voter_id=voter_id,
                    idempotency_key="click-1",
                    work_id=work_id,
                    is_voted=True,
                    created_at=clock.now,
                )
            )
            db_session.commit()
            raise IntegrityError("INSERT INTO votes", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(ledger, "_flip", racing_flip)

        result = ledger.toggle("voter-v", work.id, idempotency_key="click-1")

        assert (result.is_voted, result.vote_count) == (True, 1)

    @pytest.mark.slow
    def test_parallel_toggles_converge_to_parity(self, file_engine, clock):
        factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        setup = factory()
        work_id = add_submission(setup, "author-1").id
        setup.close()

        attempts = 6
        barrier = threading.Barrier(attempts)
        applied = []
        lock = threading.Lock()

        def attempt():
            db = factory()
            try:
                ledger = VoteLedger(db, deadline=FUTURE_DEADLINE, clock=clock)
                barrier.wait()
                try:
                    ledger.toggle("voter-v", work_id)
                except ConflictAlreadyExists:
                    return
                with lock:
                    applied.append(1)
            finally:
                db.close()

        threads = [threading.Thread(target=attempt) for _ in range(attempts)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        db = factory()
        try:
            rows = _rows(db, "voter-v", work_id)
            assert rows <= 1
            assert rows == len(applied) % 2
        finally:
            db.close()


class TestReads:
    def test_state(self, ledger, work):
        assert ledger.state("voter-v", work.id).to_response() == {"isVoted": False, "voteCount": 0}

        ledger.toggle("voter-v", work.id)

        assert ledger.state("voter-v", work.id).to_response() == {"isVoted": True, "voteCount": 1}
        assert ledger.state("voter-u", work.id).to_response() == {"isVoted": False, "voteCount": 1}

    def test_voted_work_ids(self, ledger, work, db_session):
        other = add_submission(db_session, "author-2")
        ledger.toggle("voter-v", work.id)
        ledger.toggle("voter-v", other.id)

        assert set(ledger.voted_work_ids("voter-v")) == {work.id, other.id}
        assert ledger.voted_work_ids("voter-u") == []
