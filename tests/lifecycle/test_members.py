"""Member service tests: registration, profile updates, suspension,
deletion and payment history."""
from datetime import datetime, timedelta

import pytest

from database.models import Attendance, CoupleGroup, Payment, MemberStatus
from lifecycle.couples import CoupleLinkManager
from lifecycle.errors import ValidationError, ConflictError, NotFoundError
from lifecycle.fingerprints import FingerprintAllocator
from lifecycle.members import MemberService, normalize_phone
from tests.conftest import make_member, reload, TEST_SECRET, NOW


@pytest.fixture
def allocator(temp_db, clock):
    return FingerprintAllocator(temp_db, clock, secret=TEST_SECRET, device_key="")


@pytest.fixture
def service(temp_db, clock, allocator):
    """Service that requires fingerprint enrollment."""
    return MemberService(temp_db, clock, allocator=allocator, require_enrollment=True)


@pytest.fixture
def open_service(temp_db, clock, allocator):
    """Service that allows registration without a fingerprint."""
    return MemberService(temp_db, clock, allocator=allocator, require_enrollment=False)


def registration(**overrides):
    fields = {
        "name": "  Asha Rao ",
        "age": 28,
        "phone": "98765-43210",
        "address": "MG Road",
        "membership_type": "Basic",
        "duration": 3,
    }
    fields.update(overrides)
    return fields


class TestRegister:

    def test_register_with_enrollment(self, temp_db, service, allocator):
        allocation = allocator.allocate()
        member = service.register(
            **registration(email=" Asha@Example.COM "),
            fingerprint_id=allocation.fingerprint_id,
            fingerprint_token=allocation.proof_token,
        )

        assert member.name == "Asha Rao"
        assert member.phone == "9876543210"
        assert member.email == "asha@example.com"
        assert member.status == MemberStatus.ACTIVE.value
        assert member.fingerprint_id == 1
        assert float(member.payment_amount) == 1000.0
        assert member.subscription_start_date == NOW
        assert member.subscription_end_date == datetime(2024, 4, 15, 10)

        payments = temp_db.payments.by_member(member.id)
        assert len(payments) == 1
        assert payments[0].notes == "Initial payment for 3 month(s) during registration"
        assert payments[0].duration == 3

    def test_fingerprint_required(self, service):
        with pytest.raises(ValidationError, match="Fingerprint scan is required"):
            service.register(**registration())

    def test_token_required(self, service):
        with pytest.raises(ValidationError, match="Missing fingerprint scan token"):
            service.register(**registration(), fingerprint_id=5)

    def test_token_for_other_id_rejected(self, service, allocator):
        allocation = allocator.allocate(5)
        with pytest.raises(ValidationError):
            service.register(
                **registration(), fingerprint_id=6,
                fingerprint_token=allocation.proof_token,
            )

    def test_expired_token_rejected(self, service, allocator, clock):
        allocation = allocator.allocate(5)
        clock.advance(minutes=11)
        with pytest.raises(ValidationError, match="expired"):
            service.register(
                **registration(), fingerprint_id=5,
                fingerprint_token=allocation.proof_token,
            )

    def test_without_enrollment_requirement(self, open_service):
        member = open_service.register(**registration())
        assert member.fingerprint_id is None

    def test_custom_plan(self, open_service):
        member = open_service.register(
            **registration(membership_type="Custom"), custom_amount="1750"
        )
        assert float(member.payment_amount) == 1750.0
        assert float(member.custom_amount) == 1750.0

    def test_explicit_start_date(self, open_service):
        member = open_service.register(
            **registration(duration=1), subscription_start_date="2024-01-31T00:00:00Z"
        )
        assert member.subscription_start_date == datetime(2024, 1, 31)
        assert member.subscription_end_date == datetime(2024, 2, 29)

    @pytest.mark.parametrize("overrides", [
        {"name": "   "},
        {"address": ""},
        {"age": 0},
        {"age": 101},
        {"age": "abc"},
        {"phone": "12345"},
        {"phone": "5876543210"},
        {"email": "not-an-email"},
        {"membership_type": "Gold"},
        {"duration": 2},
        {"payment_method": "Cheque"},
        {"membership_type": "Custom"},
        {"membership_type": "Custom", "custom_amount": -10},
        {"subscription_start_date": "yesterday-ish"},
    ])
    def test_validation(self, temp_db, open_service, overrides):
        with pytest.raises(ValidationError):
            open_service.register(**registration(**overrides))
        assert temp_db.payments.count(Payment) == 0

    def test_duplicate_phone(self, open_service):
        open_service.register(**registration())
        with pytest.raises(ConflictError, match="phone"):
            open_service.register(**registration(name="Other"))

    def test_duplicate_email(self, open_service):
        open_service.register(**registration(email="a@b.com"))
        with pytest.raises(ConflictError, match="email"):
            open_service.register(**registration(phone="9123456789", email="A@B.com"))

    def test_duplicate_fingerprint(self, temp_db, service, clock):
        make_member(temp_db, fingerprint_id=5)
        # 录入凭证签发后、注册完成前，ID 被其他会员占用
        token = FingerprintAllocator(
            temp_db, clock, secret=TEST_SECRET
        ).signer.issue(5).proof_token
        with pytest.raises(ConflictError, match="Fingerprint ID"):
            service.register(**registration(), fingerprint_id=5, fingerprint_token=token)


class TestUpdate:

    def test_plan_change_rederives_amount(self, temp_db, open_service):
        member = open_service.register(**registration())
        updated = open_service.update(member.id, membership_type="Premium")
        assert updated.membership_type == "Premium"
        assert float(updated.payment_amount) == 2000.0
        assert updated.custom_amount is None

    def test_custom_amount_alone_rejected_for_fixed_plan(self, temp_db, open_service):
        member = open_service.register(**registration())
        with pytest.raises(ValidationError, match="membership type Custom"):
            open_service.update(member.id, custom_amount=900)

        stored = reload(temp_db, member.id)
        assert stored.membership_type == "Basic"
        assert float(stored.payment_amount) == 1000.0
        assert stored.custom_amount is None

    def test_custom_amount_with_fixed_plan_rejected(self, open_service):
        member = open_service.register(**registration())
        with pytest.raises(ValidationError):
            open_service.update(member.id, membership_type="Premium", custom_amount=900)

    def test_switch_to_custom_with_amount(self, open_service):
        member = open_service.register(**registration())
        updated = open_service.update(member.id, membership_type="Custom", custom_amount=900)
        assert updated.membership_type == "Custom"
        assert float(updated.payment_amount) == 900.0

    def test_custom_member_amount_change(self, open_service):
        member = open_service.register(
            **registration(membership_type="Custom"), custom_amount=1750
        )
        updated = open_service.update(member.id, custom_amount=1200)
        assert updated.membership_type == "Custom"
        assert float(updated.payment_amount) == 1200.0
        assert float(updated.custom_amount) == 1200.0

    def test_duration_change_recomputes_end(self, open_service):
        member = open_service.register(**registration(duration=1))
        updated = open_service.update(member.id, duration=12)
        assert updated.subscription_end_date == datetime(2025, 1, 15, 10)

    def test_start_date_change_recomputes_end(self, open_service):
        member = open_service.register(**registration(duration=1))
        updated = open_service.update(
            member.id, subscription_start_date=datetime(2024, 3, 31)
        )
        assert updated.subscription_end_date == datetime(2024, 4, 30)

    def test_non_updatable_fields_ignored(self, open_service):
        member = open_service.register(**registration())
        updated = open_service.update(member.id, status="Suspended", address=" New ")
        assert updated.status == MemberStatus.ACTIVE.value
        assert updated.address == "New"

    def test_duplicate_phone(self, open_service):
        open_service.register(**registration())
        other = open_service.register(**registration(phone="9123456789"))
        with pytest.raises(ConflictError):
            open_service.update(other.id, phone="9876543210")

    def test_own_phone_allowed(self, open_service):
        member = open_service.register(**registration())
        assert open_service.update(member.id, phone="9876543210").phone == "9876543210"

    def test_clear_fingerprint(self, temp_db, open_service):
        member = make_member(temp_db, fingerprint_id=9)
        assert open_service.update(member.id, fingerprint_id=None).fingerprint_id is None

    def test_grouped_member_cannot_leave_couple_plan(self, temp_db, open_service):
        a = make_member(temp_db, membership_type="Couple")
        b = make_member(temp_db, membership_type="Couple")
        CoupleLinkManager(temp_db).link(a.id, b.id)
        with pytest.raises(ValidationError):
            open_service.update(a.id, membership_type="Basic")

    def test_invalid_values(self, open_service):
        member = open_service.register(**registration())
        with pytest.raises(ValidationError):
            open_service.update(member.id, age=200)
        with pytest.raises(ValidationError):
            open_service.update(member.id, fingerprint_id=0)

    def test_missing_member(self, open_service):
        with pytest.raises(NotFoundError):
            open_service.update(99999, name="Ghost")


class TestSuspension:

    def test_suspend_and_reactivate(self, temp_db, open_service):
        member = make_member(temp_db, end_date=NOW + timedelta(days=10))
        assert open_service.suspend(member.id).status == MemberStatus.SUSPENDED.value
        assert reload(temp_db, member.id).status == MemberStatus.SUSPENDED.value

        assert open_service.reactivate(member.id).status == MemberStatus.ACTIVE.value

    def test_reactivate_lapsed_member_is_expired(self, temp_db, open_service):
        member = make_member(
            temp_db, end_date=NOW - timedelta(days=10),
            status=MemberStatus.SUSPENDED.value
        )
        assert open_service.reactivate(member.id).status == MemberStatus.EXPIRED.value

    def test_missing_member(self, open_service):
        with pytest.raises(NotFoundError):
            open_service.suspend(99999)
        with pytest.raises(NotFoundError):
            open_service.reactivate(99999)


class TestDelete:

    def test_delete_cascades(self, temp_db, open_service, clock):
        member = make_member(temp_db, fingerprint_id=3, end_date=NOW + timedelta(days=5))
        temp_db.payments.record(member.id, 1000.0)
        with temp_db.get_session() as session:
            temp_db.attendance.create(member.id, NOW, NOW.date(), session=session)
            session.commit()

        open_service.delete(member.id)

        assert temp_db.members.get(member.id) is None
        assert temp_db.payments.count(Payment) == 0
        assert temp_db.attendance.count(Attendance) == 0
        assert temp_db.members.assigned_fingerprint_ids() == []

    def test_delete_dissolves_couple_group(self, temp_db, open_service):
        a = make_member(temp_db, membership_type="Couple")
        b = make_member(temp_db, membership_type="Couple")
        CoupleLinkManager(temp_db).link(a.id, b.id)

        open_service.delete(a.id)

        partner = reload(temp_db, b.id)
        assert partner.couple_group_id is None
        assert partner.couple_partner_id is None
        assert partner.membership_type == "Couple"
        assert temp_db.couples.count(CoupleGroup) == 0

    def test_delete_missing(self, open_service):
        with pytest.raises(NotFoundError):
            open_service.delete(99999)


class TestQueries:

    def test_payment_history(self, temp_db, open_service):
        member = open_service.register(**registration())
        temp_db.payments.record(member.id, 500.0, payment_method="UPI")

        history = open_service.payments(member.id)
        assert history["total"] == 2
        assert history["total_amount"] == 1500.0

    def test_get_and_list(self, open_service):
        member = open_service.register(**registration())
        assert open_service.get(member.id).name == "Asha Rao"
        assert [m.id for m in open_service.list()] == [member.id]
        with pytest.raises(NotFoundError):
            open_service.get(99999)


@pytest.mark.parametrize("raw,expected", [
    ("98765 43210", "9876543210"),
    ("(987) 654-3210", "9876543210"),
    (9876543210, ""),
    (None, ""),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected
