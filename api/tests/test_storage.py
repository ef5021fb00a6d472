"""Storage gateway behaviour shared by the memory and database backends."""

from __future__ import annotations

import threading
import uuid
from datetime import timedelta
from typing import Generator

import pytest
from sqlalchemy.orm import sessionmaker

from buildtalk.db import Base, create_db_engine
from buildtalk.models import utcnow
from buildtalk.storage import ConflictError, DatabaseStorage, MemoryStorage, Storage, reconcile_vote


@pytest.fixture(params=["memory", "database"])
def backend(request, tmp_path) -> Generator[Storage, None, None]:
    if request.param == "memory":
        yield MemoryStorage()
        return

    engine = create_db_engine(f"sqlite:///{tmp_path / 'storage.db'}")
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        yield DatabaseStorage(session)
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def author(backend: Storage):
    return backend.create_user(email="author@example.com", first_name="Автор")


def test_reconcile_vote_state_machine():
    assert reconcile_vote(None, "up") == ("created", "up")
    assert reconcile_vote("up", "up") == ("removed", None)
    assert reconcile_vote("up", "down") == ("replaced", "down")
    assert reconcile_vote("down", "up") == ("replaced", "up")


def test_unknown_ids_return_none(backend: Storage):
    missing = uuid.uuid4()
    assert backend.get_user(missing) is None
    assert backend.get_thread(missing) is None
    assert backend.get_comment(missing) is None
    assert backend.update_thread(missing, {"title": "x"}) is None
    assert backend.update_thread_upvotes(missing, 3) is None
    assert backend.update_comment_upvotes(missing, 3) is None
    assert backend.delete_thread(missing) is False
    assert backend.delete_comment(missing) is False
    assert backend.create_comment(thread_id=missing, content="x", author_id=missing) is None
    assert backend.get_session("0" * 64) is None


def test_create_thread_starts_at_zero(backend: Storage, author):
    thread = backend.create_thread(title="T", content="C", category="construction", author_id=author.id)
    assert thread.upvotes == 0
    assert thread.created_at is not None
    assert backend.get_thread(thread.id).title == "T"


def test_update_thread_ignores_server_owned_fields(backend: Storage, author):
    thread = backend.create_thread(title="T", content="C", category="construction", author_id=author.id)
    updated = backend.update_thread(thread.id, {"title": "New", "upvotes": 99, "author_id": uuid.uuid4()})
    assert updated.title == "New"
    assert updated.upvotes == 0
    assert updated.author_id == author.id


def test_delete_thread_cascades(backend: Storage, author):
    thread = backend.create_thread(title="T", content="C", category="services", author_id=author.id)
    comments = [backend.create_comment(thread_id=thread.id, content=f"c{i}", author_id=author.id) for i in range(3)]
    comment_ids = [comment.id for comment in comments]
    backend.cast_vote(author.id, "comment", comment_ids[0], "up")
    backend.toggle_bookmark(author.id, "thread", thread.id)

    assert backend.delete_thread(thread.id) is True

    assert backend.get_thread(thread.id) is None
    for comment_id in comment_ids:
        assert backend.get_comment(comment_id) is None
    assert backend.get_vote(author.id, "comment", comment_ids[0]) is None
    assert backend.get_bookmarks(author.id) == []


def test_duplicate_email_conflicts(backend: Storage, author):
    with pytest.raises(ConflictError):
        backend.create_user(email="AUTHOR@example.com")
    assert backend.get_user_by_email("author@example.com").id == author.id


def test_upsert_user_matches_subject_then_email(backend: Storage, author):
    linked = backend.upsert_user(
        oidc_subject="sub-1", email="author@example.com", email_verified=True, first_name="Новое"
    )
    assert linked.id == author.id
    assert linked.first_name == "Новое"

    again = backend.upsert_user(oidc_subject="sub-1", email=None)
    assert again.id == author.id

    fresh = backend.upsert_user(oidc_subject="sub-2", email="fresh@example.com")
    assert fresh.id != author.id
    assert backend.get_user_by_oidc_subject("sub-2").id == fresh.id


def test_karma_only_grows(backend: Storage, author):
    assert backend.add_karma(author.id, 3).karma == 3
    with pytest.raises(ValueError):
        backend.add_karma(author.id, -1)
    assert backend.get_user(author.id).karma == 3


def test_cast_vote_outcomes(backend: Storage, author):
    thread = backend.create_thread(title="T", content="C", category="furniture", author_id=author.id)

    outcome = backend.cast_vote(author.id, "thread", thread.id, "up")
    assert (outcome.action, outcome.previous, outcome.vote.vote_type) == ("created", None, "up")

    outcome = backend.cast_vote(author.id, "thread", thread.id, "down")
    assert (outcome.action, outcome.previous, outcome.vote.vote_type) == ("replaced", "up", "down")

    outcome = backend.cast_vote(author.id, "thread", thread.id, "down")
    assert (outcome.action, outcome.previous, outcome.vote) == ("removed", "down", None)

    counts = backend.get_vote_counts("thread", thread.id)
    assert (counts.upvotes, counts.downvotes) == (0, 0)


def test_award_achievement_once(backend: Storage, author):
    achievement = backend.ensure_achievement(
        name="Прораб", description=None, icon=None, category="karma", requirement=500
    )
    assert backend.ensure_achievement(
        name="Прораб", description=None, icon=None, category="karma", requirement=500
    ).id == achievement.id

    backend.award_achievement(author.id, achievement.id)
    with pytest.raises(ConflictError):
        backend.award_achievement(author.id, achievement.id)
    assert len(backend.get_user_achievements(author.id)) == 1


def test_expired_sessions_are_purged(backend: Storage, author):
    backend.create_session(
        user_id=author.id,
        token_hash="a" * 64,
        identity={"id": str(author.id)},
        expires_at=utcnow() - timedelta(seconds=1),
    )
    backend.create_session(
        user_id=author.id,
        token_hash="b" * 64,
        identity={"id": str(author.id)},
        expires_at=utcnow() + timedelta(hours=1),
    )

    assert backend.get_session("a" * 64) is None
    assert backend.get_session("b" * 64).user_id == author.id
    assert backend.delete_session("b" * 64) is True
    assert backend.get_session("b" * 64) is None


def test_concurrent_casts_leave_one_consistent_state():
    storage = MemoryStorage()
    voter = storage.create_user(email="voter@example.com")
    thread = storage.create_thread(title="T", content="C", category="construction", author_id=voter.id)
    barrier = threading.Barrier(8)

    def cast():
        barrier.wait()
        storage.cast_vote(voter.id, "thread", thread.id, "up")

    workers = [threading.Thread(target=cast) for _ in range(8)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()

    # Eight toggles of the same direction end where they started
    assert storage.get_vote(voter.id, "thread", thread.id) is None
    counts = storage.get_vote_counts("thread", thread.id)
    assert counts.upvotes == 0


def test_unverified_email_never_links_an_account(backend: Storage, author):
    with pytest.raises(ConflictError):
        backend.upsert_user(oidc_subject="sub-1", email="author@example.com")
    assert backend.get_user_by_oidc_subject("sub-1") is None
    assert backend.get_user(author.id).oidc_subject is None

    # Nor does it replace the address of an account matched by subject
    linked = backend.upsert_user(oidc_subject="sub-1", email="author@example.com", email_verified=True)
    again = backend.upsert_user(oidc_subject="sub-1", email="someone-else@example.com")
    assert again.id == linked.id
    assert again.email == "author@example.com"


def test_vote_karma_is_granted_once_per_pair(backend: Storage, author):
    voter = backend.create_user(email="voter@example.com")
    thread = backend.create_thread(title="T", content="C", category="services", author_id=author.id)
    comment = backend.create_comment(thread_id=thread.id, content="c", author_id=author.id)

    assert backend.grant_vote_karma(voter.id, "thread", thread.id, author.id) is True
    assert backend.grant_vote_karma(voter.id, "thread", thread.id, author.id) is False
    assert backend.grant_vote_karma(voter.id, "comment", comment.id, author.id) is True
    assert backend.grant_vote_karma(voter.id, "thread", thread.id, uuid.uuid4()) is False

    assert backend.get_user(author.id).karma == 2


def test_vote_locks_do_not_grow_with_voted_pairs():
    storage = MemoryStorage()
    voter = storage.create_user(email="voter@example.com")
    stripes = len(storage._key_locks)

    for _ in range(stripes + 50):
        thread = storage.create_thread(title="T", content="C", category="services", author_id=voter.id)
        storage.cast_vote(voter.id, "thread", thread.id, "up")
        storage.toggle_bookmark(voter.id, "thread", thread.id)

    assert len(storage._key_locks) == stripes


def test_concurrent_database_casts_leave_one_consistent_state(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(engine)
    make_session = sessionmaker(bind=engine, autoflush=False, future=True)

    with make_session() as session:
        setup = DatabaseStorage(session)
        voter_id = setup.create_user(email="voter@example.com").id
        thread_id = setup.create_thread(
            title="T", content="C", category="construction", author_id=voter_id
        ).id

    failures: list[Exception] = []

    def cast(barrier: threading.Barrier):
        barrier.wait()
        with make_session() as session:
            try:
                DatabaseStorage(session).cast_vote(voter_id, "thread", thread_id, "up")
            except ConflictError:
                pass
            except Exception as e:
                failures.append(e)

    for _ in range(10):
        barrier = threading.Barrier(4)
        workers = [threading.Thread(target=cast, args=(barrier,)) for _ in range(4)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

    try:
        assert failures == []
        with make_session() as session:
            storage = DatabaseStorage(session)
            vote = storage.get_vote(voter_id, "thread", thread_id)
            counts = storage.get_vote_counts("thread", thread_id)
            assert counts.downvotes == 0
            assert counts.upvotes == (1 if vote is not None else 0)
    finally:
        engine.dispose()
