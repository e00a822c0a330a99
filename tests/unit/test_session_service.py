"""
Unit tests for the session store.

Tests the live-session filter, the one-active-session-per-device
constraint, idempotent deactivation and the expiry bookkeeping.
"""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from device_auth.core.errors import ConflictError
from device_auth.models.base import utcnow
from device_auth.models.user import User
from device_auth.services import session_service
from tests.conftest import build_session


@pytest.mark.unit
@pytest.mark.asyncio
class TestCreateAndLookup:
    """Test inserts and the live-only lookups."""

    async def test_create_and_get_by_id(self, db_session: AsyncSession, alice: User):
        """Test a created session is found by id and both tokens."""
        session = await session_service.create_session(build_session(alice, "dev-1"), db_session)

        assert (await session_service.get_session_by_id(session.id, db_session)) is session
        assert (await session_service.get_session_by_id(str(session.id), db_session)) is session
        assert (
            await session_service.get_session_by_access_token(session.access_token, db_session)
        ) is session
        assert (
            await session_service.get_session_by_refresh_token(session.refresh_token, db_session)
        ) is session

    async def test_unknown_and_garbage_ids(self, db_session: AsyncSession, alice: User):
        assert await session_service.get_session_by_id(uuid.uuid4(), db_session) is None
        assert await session_service.get_session_by_id("not-a-uuid", db_session) is None

    async def test_second_active_session_for_device_conflicts(
        self, db_session: AsyncSession, alice: User
    ):
        """Test the partial unique index rejects a second active row."""
        first = await session_service.create_session(build_session(alice, "dev-1"), db_session)

        with pytest.raises(ConflictError):
            await session_service.create_session(build_session(alice, "dev-1"), db_session)

        # Savepoint rollback leaves the first row intact.
        assert (await session_service.get_session_by_id(first.id, db_session)) is first

    async def test_inactive_row_does_not_block_new_session(
        self, db_session: AsyncSession, alice: User
    ):
        first = await session_service.create_session(build_session(alice, "dev-1"), db_session)
        await session_service.deactivate_session(first.id, db_session)

        second = await session_service.create_session(build_session(alice, "dev-1"), db_session)
        found = await session_service.get_active_session_for_device(alice.id, "dev-1", db_session)
        assert found is second

    async def test_same_device_different_users(
        self, db_session: AsyncSession, alice: User, bob: User
    ):
        """Two accounts on one device each hold their own active session."""
        a = await session_service.create_session(build_session(alice, "shared"), db_session)
        b = await session_service.create_session(build_session(bob, "shared"), db_session)

        sessions = await session_service.list_active_sessions_for_device("shared", db_session)
        assert {s.id for s in sessions} == {a.id, b.id}

        only_bob = await session_service.list_active_sessions_for_device(
            "shared", db_session, user_id=bob.id,
        )
        assert [s.id for s in only_bob] == [b.id]

    async def test_expired_session_is_invisible(self, db_session: AsyncSession, alice: User):
        """Test lookups never return a session past expires_at."""
        session = await session_service.create_session(
            build_session(alice, "dev-1", expires_in=timedelta(seconds=-1)), db_session,
        )

        assert await session_service.get_session_by_id(session.id, db_session) is None
        assert await session_service.get_session_by_access_token(session.access_token, db_session) is None
        assert await session_service.get_active_session_for_device(alice.id, "dev-1", db_session) is None
        assert await session_service.list_active_sessions_for_user(alice.id, db_session) == []

        # Still visible to the diagnostic lookup.
        assert await session_service.find_session_any_state(session.id, db_session) is session

    async def test_list_for_user_most_recent_first(self, db_session: AsyncSession, alice: User):
        now = utcnow()
        old = await session_service.create_session(
            build_session(alice, "dev-old", last_active_at=now - timedelta(hours=2)), db_session,
        )
        new = await session_service.create_session(
            build_session(alice, "dev-new", last_active_at=now), db_session,
        )

        sessions = await session_service.list_active_sessions_for_user(alice.id, db_session)
        assert [s.id for s in sessions] == [new.id, old.id]

    async def test_find_device_id_by_fingerprint_is_scoped_to_user(
        self, db_session: AsyncSession, alice: User, bob: User
    ):
        """Test a fingerprint only maps back to the given user's own devices."""
        await session_service.create_session(
            build_session(bob, "bobs-device", device_fingerprint="f" * 64), db_session,
        )

        assert (
            await session_service.find_device_id_by_fingerprint("f" * 64, db_session, user_id=alice.id)
        ) is None

        await session_service.create_session(
            build_session(
                alice, "alices-device", device_fingerprint="f" * 64,
                last_active_at=utcnow() - timedelta(hours=1),
            ),
            db_session,
        )

        assert (
            await session_service.find_device_id_by_fingerprint("f" * 64, db_session, user_id=alice.id)
        ) == "alices-device"
        # Without a user, the most recently active session wins.
        assert await session_service.find_device_id_by_fingerprint("f" * 64, db_session) == "bobs-device"
        assert await session_service.find_device_id_by_fingerprint("0" * 64, db_session) is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestDeactivation:
    """Test revocation bookkeeping."""

    async def test_deactivate_is_idempotent(self, db_session: AsyncSession, alice: User):
        session = await session_service.create_session(build_session(alice, "dev-1"), db_session)

        assert await session_service.deactivate_session(session.id, db_session) is True
        assert await session_service.deactivate_session(session.id, db_session) is False
        assert session.is_active is False
        assert session.revoke_reason == "logout"
        assert session.revoked_at is not None

    async def test_deactivate_one_leaves_others(self, db_session: AsyncSession, alice: User):
        a = await session_service.create_session(build_session(alice, "dev-a"), db_session)
        b = await session_service.create_session(build_session(alice, "dev-b"), db_session)

        await session_service.deactivate_session(a.id, db_session)

        assert await session_service.get_session_by_id(a.id, db_session) is None
        assert await session_service.get_session_by_id(b.id, db_session) is b

    async def test_deactivate_sessions_with_exclusion(self, db_session: AsyncSession, alice: User):
        keep = await session_service.create_session(build_session(alice, "dev-a"), db_session)
        await session_service.create_session(build_session(alice, "dev-b"), db_session)
        await session_service.create_session(build_session(alice, "dev-c"), db_session)

        count = await session_service.deactivate_sessions(
            db_session, user_id=alice.id, exclude_session_id=keep.id,
        )
        assert count == 2
        remaining = await session_service.list_active_sessions_for_user(alice.id, db_session)
        assert [s.id for s in remaining] == [keep.id]

        assert await session_service.deactivate_sessions(
            db_session, user_id=alice.id, exclude_session_id=keep.id,
        ) == 0

    async def test_deactivate_sessions_requires_a_filter(self, db_session: AsyncSession):
        with pytest.raises(ValueError):
            await session_service.deactivate_sessions(db_session)

    async def test_revoked_session_cannot_be_reactivated(self, db_session: AsyncSession, alice: User):
        session = await session_service.create_session(build_session(alice, "dev-1"), db_session)
        await session_service.deactivate_session(session.id, db_session)

        with pytest.raises(ValueError):
            session.is_active = True

    async def test_rename_device_touches_only_the_users_live_rows(
        self, db_session: AsyncSession, alice: User, bob: User
    ):
        old = await session_service.create_session(
            build_session(alice, "shared", device_name="Old iPad"), db_session,
        )
        await session_service.deactivate_session(old.id, db_session)
        mine = await session_service.create_session(build_session(alice, "shared"), db_session)
        bobs = await session_service.create_session(
            build_session(bob, "shared", device_name="Bob's iPad"), db_session,
        )

        count = await session_service.rename_device("shared", "Family iPad", db_session, user_id=alice.id)

        assert count == 1
        assert mine.device_name == "Family iPad"
        assert bobs.device_name == "Bob's iPad"
        assert old.device_name == "Old iPad"

    async def test_user_has_device(self, db_session: AsyncSession, alice: User, bob: User):
        session = await session_service.create_session(build_session(alice, "dev-1"), db_session)
        await session_service.deactivate_session(session.id, db_session)

        assert await session_service.user_has_device(alice.id, "dev-1", db_session) is True
        assert await session_service.user_has_device(bob.id, "dev-1", db_session) is False


@pytest.mark.unit
@pytest.mark.asyncio
class TestExpirySweep:
    """Test expiry flipping and purging."""

    async def test_expire_stale_sessions(self, db_session: AsyncSession, alice: User):
        stale = await session_service.create_session(
            build_session(alice, "dev-old", expires_in=timedelta(seconds=-5)), db_session,
        )
        live = await session_service.create_session(build_session(alice, "dev-new"), db_session)

        assert await session_service.expire_stale_sessions(db_session) == 1
        assert stale.is_active is False
        assert stale.revoke_reason == "expired"
        assert live.is_active is True

    async def test_purge_only_old_inactive_rows(self, db_session: AsyncSession, alice: User):
        old = await session_service.create_session(build_session(alice, "dev-old"), db_session)
        recent = await session_service.create_session(build_session(alice, "dev-recent"), db_session)
        live = await session_service.create_session(build_session(alice, "dev-live"), db_session)

        old.deactivate(now=utcnow() - timedelta(days=40))
        recent.deactivate()
        await db_session.flush()

        purged = await session_service.purge_inactive_sessions(
            utcnow() - timedelta(days=30), db_session,
        )
        assert purged == 1

        remaining = await session_service.list_all_sessions_for_user(alice.id, db_session)
        assert {s.id for s in remaining} == {recent.id, live.id}


@pytest.mark.unit
class TestDeviceSessionModel:
    """Test the in-Python state helpers."""

    def test_is_valid(self):
        session = build_session(User(id=uuid.uuid4(), username="x", email="x@test.com"), "dev-1")
        assert session.is_valid() is True

        session.deactivate()
        assert session.is_valid() is False

    def test_expiry_with_naive_timestamp(self):
        """Backends that drop the offset still compare as UTC."""
        user = User(id=uuid.uuid4(), username="x", email="x@test.com")
        session = build_session(user, "dev-1", expires_in=timedelta(seconds=-1))
        session.expires_at = session.expires_at.replace(tzinfo=None)

        assert session.is_expired() is True
        assert session.is_valid() is False
