"""会员生命周期引擎 - 统一入口（Facade）

把时钟、状态同步、续费、指纹池、情侣绑定、签到和会员服务组合在
同一个 DatabaseManager 上。每个读写入口都先做一次批量状态同步
（幂等，没有变化时不写库），再分派给对应组件；签到路径只做
单会员同步，不扫全表。

Example::

    engine = MembershipEngine("sqlite:///data/gym.db")
    engine.create_tables()

    allocation = engine.allocate_fingerprint()
    member = engine.register(
        name="Asha", age=28, phone="9876543210", address="MG Road",
        membership_type="Basic", duration=3,
        fingerprint_id=allocation.fingerprint_id,
        fingerprint_token=allocation.proof_token,
    )
    engine.record_attendance(fingerprint_id=allocation.fingerprint_id)
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from loguru import logger

from config.plan_config import PlanConfig, plan_config as default_plan_config
from database import DatabaseManager
from database.models import Member
from lifecycle.attendance import AttendanceRecorder, CheckInResult
from lifecycle.clock import Clock, SystemClock
from lifecycle.couples import CoupleLinkManager
from lifecycle.fingerprints import FingerprintAllocator, Allocation
from lifecycle.members import MemberService
from lifecycle.renewal import RenewalService, RenewalResult
from lifecycle.status import StatusSynchronizer


class MembershipEngine:
    """会员生命周期引擎

    Attributes:
        db: 数据库管理器。
        clock: 时钟。
        synchronizer: 状态同步器。
        renewals: 续费服务。
        fingerprints: 指纹ID池分配器。
        couples: 情侣绑定管理器。
        attendance: 签到记录器。
        members: 会员服务。
    """

    def __init__(self, database_url: Optional[str] = None,
                 clock: Optional[Clock] = None,
                 plans: Optional[PlanConfig] = None,
                 db: Optional[DatabaseManager] = None,
                 fingerprint_secret: Optional[str] = None,
                 device_key: Optional[str] = None,
                 timezone_name: Optional[str] = None,
                 require_enrollment: Optional[bool] = None):
        self.db = db or DatabaseManager(database_url)
        self.clock = clock or SystemClock()
        self.plans = plans or default_plan_config

        self.synchronizer = StatusSynchronizer(self.db, self.clock)
        self.renewals = RenewalService(self.db, self.clock, self.plans)
        self.fingerprints = FingerprintAllocator(
            self.db, self.clock, secret=fingerprint_secret, device_key=device_key
        )
        self.couples = CoupleLinkManager(self.db, self.plans)
        self.attendance = AttendanceRecorder(
            self.db, self.clock, self.synchronizer, timezone_name=timezone_name
        )
        self.members = MemberService(
            self.db, self.clock, self.plans, self.fingerprints,
            require_enrollment=require_enrollment,
        )

        logger.debug(f"MembershipEngine ready on {self.db.database_url}")

    # ================================================================
    # 基础设施
    # ================================================================

    def create_tables(self) -> None:
        self.db.create_tables()

    def close(self) -> None:
        self.db.close()

    def _sync(self, now: Optional[datetime] = None) -> datetime:
        now = now or self.clock.now()
        self.synchronizer.synchronize_all(now)
        return now

    # ================================================================
    # 状态同步
    # ================================================================

    def synchronize(self, member_id: int, now: Optional[datetime] = None) -> str:
        """同步单个会员状态，返回同步后的状态。"""
        member = self.members.get(member_id)
        return self.synchronizer.synchronize(member, now or self.clock.now())

    def synchronize_all(self, now: Optional[datetime] = None) -> int:
        """同步全部会员状态，返回变化的会员数。"""
        return self.synchronizer.synchronize_all(now or self.clock.now())

    # ================================================================
    # 会员
    # ================================================================

    def register(self, now: Optional[datetime] = None, **fields: Any) -> Member:
        now = self._sync(now)
        return self.members.register(now=now, **fields)

    def update_member(self, member_id: int, **changes: Any) -> Member:
        self._sync()
        return self.members.update(member_id, **changes)

    def suspend(self, member_id: int) -> Member:
        self._sync()
        return self.members.suspend(member_id)

    def reactivate(self, member_id: int, now: Optional[datetime] = None) -> Member:
        now = self._sync(now)
        return self.members.reactivate(member_id, now=now)

    def delete_member(self, member_id: int) -> None:
        self._sync()
        self.members.delete(member_id)

    def get_member(self, member_id: int) -> Dict[str, Any]:
        """会员信息字典。"""
        self._sync()
        return self.db.member_to_dict(self.members.get(member_id))

    def list_members(self) -> List[Dict[str, Any]]:
        """全部会员信息，最新注册的在前。"""
        self._sync()
        return self.db.get_member_list()

    def payment_history(self, member_id: int) -> Dict[str, Any]:
        self._sync()
        return self.members.payments(member_id)

    # ================================================================
    # 续费
    # ================================================================

    def renew(self, member_id: int, months: int, amount: float,
              membership_type: Optional[str] = None,
              payment_method: str = "Cash",
              now: Optional[datetime] = None) -> RenewalResult:
        now = self._sync(now)
        return self.renewals.renew(
            member_id, months, amount, membership_type=membership_type,
            payment_method=payment_method, now=now,
        )

    # ================================================================
    # 指纹
    # ================================================================

    def allocate_fingerprint(self, candidate=None,
                             device_key: Optional[str] = None,
                             now: Optional[datetime] = None) -> Allocation:
        now = self._sync(now)
        return self.fingerprints.allocate(candidate, device_key=device_key, now=now)

    def backfill_fingerprints(self) -> int:
        self._sync()
        return self.fingerprints.backfill()

    # ================================================================
    # 情侣
    # ================================================================

    def link_couple(self, member_id: int, partner_id: int) -> str:
        self._sync()
        return self.couples.link(member_id, partner_id)

    def unlink_couple(self, member_id: int, target_type: str = "Basic") -> int:
        self._sync()
        return self.couples.unlink(member_id, target_type)

    def couple_candidates(self, member_id: int,
                          search: Optional[str] = None) -> List[Dict[str, Any]]:
        self._sync()
        return [
            self.db.member_to_dict(m)
            for m in self.couples.candidates(member_id, search)
        ]

    def couple_group(self, member_id: int) -> Optional[Dict[str, Any]]:
        self._sync()
        return self.couples.get_group(member_id)

    # ================================================================
    # 签到（只做单会员同步）
    # ================================================================

    def record_attendance(self, member_id: Optional[int] = None,
                          fingerprint_id=None,
                          now: Optional[datetime] = None) -> CheckInResult:
        return self.attendance.record(
            member_id=member_id, fingerprint_id=fingerprint_id, now=now
        )

    def verify_access(self, fingerprint_id,
                      now: Optional[datetime] = None) -> CheckInResult:
        return self.attendance.verify_access(fingerprint_id, now=now)

    def attendance_today(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return self.attendance.today(now=now)
