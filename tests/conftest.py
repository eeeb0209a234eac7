"""Shared fixtures for database and lifecycle tests.

Provides a fresh temp-file SQLite DatabaseManager per test, a fixed clock,
and a helper for inserting members directly (bypassing registration
validation) so each test can set up exactly the state it needs.
"""
import os
import shutil
import tempfile
from datetime import datetime

import pytest

from database import DatabaseManager
from database.models import Member, MemberStatus
from lifecycle.clock import FixedClock
from lifecycle.engine import MembershipEngine

TEST_SECRET = "test-fingerprint-secret"
NOW = datetime(2024, 1, 15, 10, 0, 0)


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="gym-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def clock():
    """Fixed clock at 2024-01-15 10:00 UTC."""
    return FixedClock(NOW)


@pytest.fixture
def engine(temp_db, clock):
    """MembershipEngine over temp_db with a fixed clock and known secret."""
    return MembershipEngine(
        db=temp_db, clock=clock, fingerprint_secret=TEST_SECRET,
        device_key="", timezone_name="UTC", require_enrollment=True,
    )


_phone_counter = [6000000000]


def next_phone() -> str:
    """Unique valid 10-digit mobile number."""
    _phone_counter[0] += 1
    return str(_phone_counter[0])


def make_member(db, name="Member", membership_type="Basic",
                end_date=None, status=MemberStatus.ACTIVE.value,
                fingerprint_id=None, created_at=None, phone=None,
                start_date=None, amount=1000.0, duration=1):
    """Helper: insert a member row and return it (detached, loaded)."""
    start = start_date or datetime(2024, 1, 1)
    member = Member(
        name=name,
        age=30,
        phone=phone or next_phone(),
        address="Test Street",
        membership_type=membership_type,
        duration=duration,
        subscription_start_date=start,
        subscription_end_date=end_date or datetime(2024, 2, 1),
        payment_amount=amount,
        status=status,
        fingerprint_id=fingerprint_id,
        created_at=created_at or datetime(2024, 1, 1),
    )
    with db.get_session() as session:
        session.add(member)
        session.commit()
        session.refresh(member)
    return member


def reload(db, member_id):
    """Helper: fetch a member fresh from the database."""
    return db.members.get(member_id)
