"""
Tests for the membership reconciliation sweep.

Covers the expiration pass, the renewal pass, and their ordering.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, patch

from sqlalchemy.exc import OperationalError

from app.jobs.membership_reconciliation import MembershipReconciliationJob
from app.models.domain import ProductType
from conftest import (
    DEFAULT_REWARDS,
    create_member,
    create_mock_product,
    create_mock_user,
    utc,
)


def build_job(session_factory, clock) -> MembershipReconciliationJob:
    return MembershipReconciliationJob(
        session_factory=session_factory,
        clock=clock,
        default_rewards=DEFAULT_REWARDS,
    )


class TestExpirationPass:
    """Lapsed memberships are reset."""

    async def test_lapsed_membership_is_reset(self, entitlements, session_factory, now):
        # membership 2022-12-29 .. 2023-01-29, swept on 2023-02-01
        user = create_member(
            membership_at=utc(2022, 12, 29),
            membership_expires_at=utc(2023, 1, 29),
            point=30,
            ai_point=100,
        )
        entitlements.add(user, create_mock_product())

        report = await build_job(session_factory, lambda: utc(2023, 2, 1)).run()

        assert (user.point, user.ai_point) == (5, 3)
        assert user.membership_at is None
        assert user.membership_expires_at is None
        assert user.last_membership_at is None
        assert user.current_membership_product_id is None
        assert report.expired == 1
        assert report.renewed == 0

    async def test_expiration_wins_over_renewal(self, entitlements, session_factory, clock, now):
        user = create_member(
            membership_expires_at=now - timedelta(hours=1),
            last_membership_at=now - timedelta(days=45),
            point=10,
            ai_point=10,
        )
        entitlements.add(user, create_mock_product(point=30, ai_point=100))

        report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (5, 3)
        assert user.membership_at is None
        assert report.expired == 1
        assert report.renewed == 0

    async def test_user_without_membership_is_untouched(self, entitlements, session_factory, clock, db_session):
        user = create_mock_user(point=12, ai_point=34)
        entitlements.add(user, create_mock_product())

        report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (12, 34)
        assert report.examined == 0
        db_session.commit.assert_not_awaited()


class TestRenewalPass:
    """Periodic grants for open windows."""

    async def test_due_renewal_replaces_balances(self, entitlements, session_factory, clock, now):
        membership_at = now - timedelta(days=35)
        user = create_member(
            membership_at=membership_at,
            membership_expires_at=now + timedelta(days=330),
            last_membership_at=now - timedelta(days=31),
            point=10,
            ai_point=10,
        )
        entitlements.add(user, create_mock_product(point=30, ai_point=100, renewal_period_days=30))

        report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (30, 100)
        assert user.last_membership_at == now
        assert user.membership_at == membership_at
        assert report.renewed == 1

    async def test_renewal_not_due_leaves_user_unchanged(self, entitlements, session_factory, clock, now, db_session):
        last = now - timedelta(days=10)
        user = create_member(
            membership_expires_at=now + timedelta(days=20),
            last_membership_at=last,
            point=17,
            ai_point=42,
        )
        entitlements.add(user, create_mock_product(renewal_period_days=30))

        report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (17, 42)
        assert user.last_membership_at == last
        assert report.unchanged == 1
        db_session.commit.assert_not_awaited()

    async def test_renewal_uses_current_catalog_grant(self, entitlements, session_factory, clock, now):
        user = create_member(
            membership_expires_at=now + timedelta(days=200),
            last_membership_at=now - timedelta(days=30),
        )
        entitlements.add(user, create_mock_product(point=50, ai_point=500))

        await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (50, 500)

    async def test_missing_product_skips_user(self, entitlements, session_factory, clock, now):
        user = create_member(
            product_id="discontinued",
            membership_expires_at=now + timedelta(days=10),
            last_membership_at=now - timedelta(days=40),
            point=9,
            ai_point=9,
        )
        entitlements.add(user)

        with patch("app.jobs.membership_reconciliation.logger") as mock_logger:
            report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (9, 9)
        assert report.skipped == 1
        assert mock_logger.error.call_args.args[0] == "membership_renewal_product_unusable"

    async def test_non_subscription_product_skips_user(self, entitlements, session_factory, clock, now):
        user = create_member(
            membership_expires_at=now + timedelta(days=10),
            last_membership_at=now - timedelta(days=40),
            point=9,
            ai_point=9,
        )
        entitlements.add(user, create_mock_product(product_type=ProductType.PURCHASE))

        report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (9, 9)
        assert report.skipped == 1

    async def test_missing_renewal_period_skips_user(self, entitlements, session_factory, clock, now):
        user = create_member(
            membership_expires_at=now + timedelta(days=10),
            last_membership_at=now - timedelta(days=40),
            point=9,
            ai_point=9,
        )
        entitlements.add(user, create_mock_product(renewal_period_days=None))

        report = await build_job(session_factory, clock).run()

        assert (user.point, user.ai_point) == (9, 9)
        assert report.skipped == 1


class TestMembershipSweep:
    """Whole-sweep behaviour."""

    async def test_mixed_population(self, entitlements, session_factory, clock, now):
        lapsed = create_member(membership_expires_at=now - timedelta(days=2))
        due = create_member(
            membership_expires_at=now + timedelta(days=300),
            last_membership_at=now - timedelta(days=30),
            point=1,
            ai_point=1,
        )
        not_due = create_member(
            membership_expires_at=now + timedelta(days=300),
            last_membership_at=now - timedelta(days=3),
            point=2,
            ai_point=2,
        )
        non_member = create_mock_user(point=7, ai_point=7)
        entitlements.add(lapsed, due, not_due, non_member, create_mock_product())

        report = await build_job(session_factory, clock).run()

        assert report.examined == 3
        assert report.expired == 1
        assert report.renewed == 1
        assert report.unchanged == 1
        assert (non_member.point, non_member.ai_point) == (7, 7)

    async def test_commit_failure_is_isolated(self, entitlements, session_factory, clock, now, db_session):
        first = create_member(membership_expires_at=now - timedelta(days=2))
        second = create_member(membership_expires_at=now - timedelta(days=1))
        entitlements.add(first, second)
        db_session.commit = AsyncMock(
            side_effect=[OperationalError("UPDATE", {}, Exception("down")), None]
        )

        report = await build_job(session_factory, clock).run()

        assert report.failed == 1
        assert report.expired == 1
        assert report.failed_ids == [str(first.id)]
        db_session.rollback.assert_awaited_once()

    async def test_completion_event_is_logged(self, entitlements, session_factory, clock):
        with patch("app.jobs.base.logger") as mock_logger:
            report = await build_job(session_factory, clock).run()

        assert mock_logger.info.call_args.args[0] == "membership_reconciliation_ran"
        assert report.succeeded

    async def test_defaults_come_from_settings(self, session_factory, clock):
        job = MembershipReconciliationJob(session_factory=session_factory, clock=clock)

        assert job.default_rewards == DEFAULT_REWARDS
