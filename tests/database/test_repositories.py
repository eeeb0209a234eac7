"""Repository tests.

- MemberRepository: lookups, conflict detection, fingerprint pool queries,
  set-based status updates, couple group claims
- PaymentRepository / AttendanceRepository: ledger ordering, daily names
- DatabaseManager: dict conversions
"""
from datetime import datetime, date

from database.models import Member, MemberStatus
from tests.conftest import make_member


class TestMemberLookups:

    def test_get_by_fingerprint(self, temp_db):
        member = make_member(temp_db, name="Ravi", fingerprint_id=12)
        found = temp_db.members.get_by_fingerprint(12)
        assert found.id == member.id
        assert temp_db.members.get_by_fingerprint(13) is None

    def test_find_conflict_by_each_field(self, temp_db):
        member = make_member(temp_db, phone="9000000001", fingerprint_id=3)
        with temp_db.get_session() as session:
            session.get(Member, member.id).email = "a@example.com"
            session.commit()

        assert temp_db.members.find_conflict(phone="9000000001").id == member.id
        assert temp_db.members.find_conflict(email="a@example.com").id == member.id
        assert temp_db.members.find_conflict(fingerprint_id=3).id == member.id
        assert temp_db.members.find_conflict(phone="9000000002") is None

    def test_find_conflict_excludes_self(self, temp_db):
        member = make_member(temp_db, phone="9000000001")
        assert temp_db.members.find_conflict(
            phone="9000000001", exclude_id=member.id
        ) is None

    def test_find_conflict_without_criteria(self, temp_db):
        make_member(temp_db)
        assert temp_db.members.find_conflict() is None

    def test_list_members_newest_first(self, temp_db):
        make_member(temp_db, name="Old", created_at=datetime(2023, 1, 1))
        make_member(temp_db, name="New", created_at=datetime(2024, 1, 1))
        names = [m.name for m in temp_db.members.list_members()]
        assert names == ["New", "Old"]


class TestFingerprintQueries:

    def test_assigned_ids_ascending(self, temp_db):
        for fp in (9, 2, 5):
            make_member(temp_db, fingerprint_id=fp)
        make_member(temp_db)
        assert temp_db.members.assigned_fingerprint_ids() == [2, 5, 9]

    def test_without_fingerprint_in_creation_order(self, temp_db):
        late = make_member(temp_db, name="late", created_at=datetime(2024, 1, 3))
        early = make_member(temp_db, name="early", created_at=datetime(2024, 1, 1))
        make_member(temp_db, fingerprint_id=1)
        pending = temp_db.members.without_fingerprint()
        assert [m.id for m in pending] == [early.id, late.id]

    def test_assign_fingerprints(self, temp_db):
        a = make_member(temp_db)
        b = make_member(temp_db)
        with temp_db.get_session() as session:
            count = temp_db.members.assign_fingerprints({a.id: 1, b.id: 2}, session=session)
            session.commit()
        assert count == 2
        assert temp_db.members.get(a.id).fingerprint_id == 1
        assert temp_db.members.get(b.id).fingerprint_id == 2

    def test_assign_nothing(self, temp_db):
        with temp_db.get_session() as session:
            assert temp_db.members.assign_fingerprints({}, session=session) == 0


class TestStatusUpdates:

    def test_expire_and_restore(self, temp_db):
        now = datetime(2024, 1, 15)
        lapsed = make_member(temp_db, end_date=datetime(2024, 1, 10))
        renewed = make_member(
            temp_db, end_date=datetime(2024, 3, 1), status=MemberStatus.EXPIRED.value
        )
        suspended = make_member(
            temp_db, end_date=datetime(2024, 1, 1), status=MemberStatus.SUSPENDED.value
        )

        with temp_db.get_session() as session:
            assert temp_db.members.expire_lapsed(now, session=session) == 1
            assert temp_db.members.restore_renewed(now, session=session) == 1
            session.commit()

        assert temp_db.members.get(lapsed.id).status == MemberStatus.EXPIRED.value
        assert temp_db.members.get(renewed.id).status == MemberStatus.ACTIVE.value
        assert temp_db.members.get(suspended.id).status == MemberStatus.SUSPENDED.value

    def test_set_status_if_only_matches_expected(self, temp_db):
        member = make_member(temp_db, status=MemberStatus.SUSPENDED.value)
        with temp_db.get_session() as session:
            changed = temp_db.members.set_status_if(
                member.id, MemberStatus.ACTIVE.value, MemberStatus.EXPIRED.value,
                session=session
            )
            session.commit()
        assert changed == 0
        assert temp_db.members.get(member.id).status == MemberStatus.SUSPENDED.value


class TestCoupleQueries:

    def test_claim_for_group_is_conditional(self, temp_db):
        a = make_member(temp_db, membership_type="Couple")
        basic = make_member(temp_db, membership_type="Basic")
        with temp_db.get_session() as session:
            assert temp_db.members.claim_for_group(a.id, "g1", basic.id, session=session) == 1
            # 已绑定的会员不能再被写入
            assert temp_db.members.claim_for_group(a.id, "g2", basic.id, session=session) == 0
            # 非 Couple 套餐不能写入
            assert temp_db.members.claim_for_group(basic.id, "g1", a.id, session=session) == 0
            session.commit()
        assert temp_db.members.get(a.id).couple_group_id == "g1"

    def test_couple_candidates(self, temp_db):
        me = make_member(temp_db, name="Me", membership_type="Couple")
        make_member(temp_db, name="zara", membership_type="Couple")
        make_member(temp_db, name="Anil", membership_type="Couple")
        make_member(temp_db, name="Basic Bob", membership_type="Basic")
        linked = make_member(temp_db, name="Linked", membership_type="Couple")
        with temp_db.get_session() as session:
            temp_db.members.claim_for_group(linked.id, "g1", me.id, session=session)
            session.commit()

        names = [m.name for m in temp_db.members.couple_candidates(me.id)]
        assert names == ["Anil", "zara"]

        filtered = temp_db.members.couple_candidates(me.id, search="ZAR")
        assert [m.name for m in filtered] == ["zara"]

    def test_update_group_and_members_of_group(self, temp_db):
        a = make_member(temp_db, membership_type="Couple")
        b = make_member(temp_db, membership_type="Couple")
        with temp_db.get_session() as session:
            temp_db.members.claim_for_group(a.id, "g1", b.id, session=session)
            temp_db.members.claim_for_group(b.id, "g1", a.id, session=session)
            session.commit()

        assert [m.id for m in temp_db.members.members_of_group("g1")] == [a.id, b.id]
        with temp_db.get_session() as session:
            affected = temp_db.members.update_group("g1", session=session, duration=6)
            session.commit()
        assert affected == 2
        assert temp_db.members.get(b.id).duration == 6


class TestBusinessRecords:

    def test_payments_newest_first(self, temp_db):
        member = make_member(temp_db)
        first = temp_db.payments.record(member.id, 500.0, notes="first")
        with temp_db.get_session() as session:
            session.get(type(first), first.id).created_at = datetime(2023, 1, 1)
            session.commit()
        temp_db.payments.record(member.id, 700.0, payment_method="UPI", notes="second")

        notes = [p.notes for p in temp_db.payments.by_member(member.id)]
        assert notes == ["second", "first"]

    def test_payment_to_dict(self, temp_db):
        member = make_member(temp_db)
        payment = temp_db.payments.record(member.id, 1500, duration=3, couple_group_id="g1")
        data = temp_db.payments.to_dict(payment)
        assert data["amount"] == 1500.0
        assert data["duration"] == 3
        assert data["couple_group_id"] == "g1"
        assert [p.id for p in temp_db.payments.by_group("g1")] == [payment.id]

    def test_names_for_day(self, temp_db):
        a = make_member(temp_db, name="Later")
        b = make_member(temp_db, name="Earlier")
        day = date(2024, 1, 15)
        with temp_db.get_session() as session:
            temp_db.attendance.create(a.id, datetime(2024, 1, 15, 9), day, session=session)
            temp_db.attendance.create(b.id, datetime(2024, 1, 15, 7), day, session=session)
            session.commit()
        assert temp_db.attendance.names_for_day(day) == ["Earlier", "Later"]
        assert temp_db.attendance.names_for_day(date(2024, 1, 16)) == []


class TestManager:

    def test_member_info(self, temp_db):
        member = make_member(temp_db, name="Info", amount=2000.0)
        info = temp_db.get_member_info(member.id)
        assert info["name"] == "Info"
        assert info["payment_amount"] == 2000.0
        assert info["custom_amount"] is None
        assert temp_db.get_member_info(99999) is None

    def test_member_list(self, temp_db):
        make_member(temp_db)
        make_member(temp_db)
        assert len(temp_db.get_member_list()) == 2

    def test_update_by_id(self, temp_db):
        member = make_member(temp_db)
        updated = temp_db.members.update_by_id(Member, member.id, address="New Road")
        assert updated.address == "New Road"
        assert temp_db.members.update_by_id(Member, 99999, address="x") is None
