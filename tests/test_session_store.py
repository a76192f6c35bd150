"""Unit tests for auth/store.py -- UserStore and SessionStore.

Covers:
- create_user fills id and timestamps; UNIQUE violations become ConflictError
- revoke keeps the first revoked_at and raises NotFoundError for unknown tokens
- is_valid follows revocation and expiry
- revoke_all_for_user only counts still-unrevoked sessions
- cleanup_expired removes expired and long-revoked sessions, keeps recent ones
- stats_for_user returns {active, total, expired, revoked}
"""

from datetime import timedelta

import pytest
from sqlalchemy import text

from auth.models import Role
from auth.store import SessionStore
from core.errors import ConflictError, NotFoundError
from tests.helpers import FakeClock, make_user, make_user_store

# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users(clock):
    store = make_user_store(clock=clock)
    yield store
    store.close()


@pytest.fixture
def sessions(users, clock):
    return SessionStore(users.engine, clock=clock)


@pytest.fixture
def user(users):
    return make_user(users, "a@x.com", "alice")


# ---------------------------------------------------------------------------
# UserStore
# ---------------------------------------------------------------------------


class TestUserStore:
    def test_create_user_fills_generated_fields(self, users, clock):
        created = make_user(users, "b@x.com", "bob")
        assert created.id
        assert created.created_at == clock.now
        assert created.updated_at == clock.now
        assert users.has_users()

    def test_create_user_matches_stored_row(self, users, clock):
        created = make_user(users, "c@x.com", "carol", role=Role.ADMIN)
        assert users.get_by_id(created.id) == created

    def test_lookups(self, users, user):
        assert users.get_by_email("a@x.com").id == user.id
        assert users.get_by_username("alice").id == user.id
        assert users.get_by_id(user.id).email == "a@x.com"
        assert users.get_by_email("missing@x.com") is None
        assert users.get_by_username("ALICE") is None, "username lookup is case-sensitive"

    def test_unique_constraints_raise_conflict(self, users, user):
        with pytest.raises(ConflictError):
            make_user(users, "a@x.com", "someone-else")
        with pytest.raises(ConflictError):
            make_user(users, "other@x.com", "alice")

    def test_update_user_stamps_updated_at(self, users, user, clock):
        clock.advance(timedelta(hours=1))
        assert users.update_user(user.id, first_name="Alicia")
        updated = users.get_by_id(user.id)
        assert updated.first_name == "Alicia"
        assert updated.updated_at == clock.now
        assert not users.update_user("missing", first_name="x")


# ---------------------------------------------------------------------------
# SessionStore
# ---------------------------------------------------------------------------


class TestSessionLifecycle:
    def test_new_session_is_valid(self, sessions, user, clock):
        sessions.create_session(user.id, "tok-1", clock.now + timedelta(days=7))
        assert sessions.is_valid("tok-1")
        assert not sessions.is_valid("unknown")

    def test_session_expires(self, sessions, user, clock):
        sessions.create_session(user.id, "tok-1", clock.now + timedelta(minutes=5))
        clock.advance(timedelta(minutes=6))
        assert not sessions.is_valid("tok-1")

    def test_revoke_keeps_first_revoked_at(self, sessions, user, clock):
        sessions.create_session(user.id, "tok-1", clock.now + timedelta(days=7))
        sessions.revoke("tok-1")
        first = sessions.find_by_token("tok-1").revoked_at
        clock.advance(timedelta(hours=2))
        sessions.revoke("tok-1")
        assert sessions.find_by_token("tok-1").revoked_at == first
        assert not sessions.is_valid("tok-1")

    def test_revoke_unknown_token_raises(self, sessions):
        with pytest.raises(NotFoundError):
            sessions.revoke("never-issued")

    def test_find_by_token_with_user(self, sessions, user, clock):
        sessions.create_session(user.id, "tok-1", clock.now + timedelta(days=7))
        session = sessions.find_by_token_with_user("tok-1")
        assert session.user.email == "a@x.com"
        assert sessions.find_by_token_with_user("unknown") is None

    def test_find_active_for_user_newest_first(self, sessions, user, clock):
        sessions.create_session(user.id, "old", clock.now + timedelta(days=7))
        clock.advance(timedelta(minutes=1))
        sessions.create_session(user.id, "new", clock.now + timedelta(days=7))
        clock.advance(timedelta(minutes=1))
        sessions.create_session(user.id, "revoked", clock.now + timedelta(days=7))
        sessions.revoke("revoked")
        assert [s.refresh_token for s in sessions.find_active_for_user(user.id)] == ["new", "old"]

    def test_revoke_all_counts_only_unrevoked(self, sessions, user, clock):
        for token in ("t1", "t2", "t3"):
            sessions.create_session(user.id, token, clock.now + timedelta(days=7))
        sessions.revoke("t1")
        assert sessions.revoke_all_for_user(user.id) == 2
        assert sessions.revoke_all_for_user(user.id) == 0


class TestCleanupAndStats:
    def test_cleanup_removes_expired_and_old_revoked(self, sessions, user, clock):
        sessions.create_session(user.id, "expired", clock.now + timedelta(hours=1))
        sessions.create_session(user.id, "old-revoked", clock.now + timedelta(days=90))
        sessions.revoke("old-revoked")
        clock.advance(timedelta(days=31))
        sessions.create_session(user.id, "recent-revoked", clock.now + timedelta(days=7))
        sessions.revoke("recent-revoked")
        sessions.create_session(user.id, "active", clock.now + timedelta(days=7))

        assert sessions.cleanup_expired() == 2
        assert sessions.find_by_token("expired") is None
        assert sessions.find_by_token("old-revoked") is None
        assert sessions.find_by_token("recent-revoked") is not None
        assert sessions.find_by_token("active") is not None

    def test_stats_for_user(self, sessions, user, clock):
        sessions.create_session(user.id, "active", clock.now + timedelta(days=7))
        sessions.create_session(user.id, "revoked", clock.now + timedelta(days=7))
        sessions.revoke("revoked")
        sessions.create_session(user.id, "expired", clock.now + timedelta(minutes=1))
        clock.advance(timedelta(minutes=2))

        assert sessions.stats_for_user(user.id) == {"active": 1, "total": 3, "expired": 1, "revoked": 1}

    def test_sessions_follow_user_deletion(self, users, sessions, user, clock):
        """ON DELETE CASCADE removes sessions with their user."""
        sessions.create_session(user.id, "tok-1", clock.now + timedelta(days=7))
        with users.engine.connect() as conn:
            conn.execute(text("DELETE FROM users WHERE id = :id"), {"id": user.id})
            conn.commit()
        assert sessions.find_by_token("tok-1") is None
