"""签到记录器 - 门禁的对外入口

流程：解析会员（会员ID或指纹ID）→ 单会员状态同步 → 非 Active 拒绝
（不写签到）→ Active 时按"会员 + 自然日"去重写入签到记录。

自然日按配置时区的零点到零点划分；同一天重复刷卡返回已有记录。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Any

from loguru import logger
from sqlalchemy.exc import IntegrityError

from config.settings import settings
from database import DatabaseManager
from database.models import Attendance, Member, MemberStatus, CheckInOutcome
from lifecycle.clock import Clock, SystemClock, local_day, resolve_timezone
from lifecycle.errors import ValidationError, NotFoundError
from lifecycle.fingerprints import parse_fingerprint_id
from lifecycle.status import StatusSynchronizer


@dataclass
class CheckInResult:
    """签到结果"""
    outcome: str
    status: str
    member: Member
    record: Optional[Attendance] = None

    @property
    def granted(self) -> bool:
        return self.outcome != CheckInOutcome.DENIED.value


class AttendanceRecorder:
    """签到记录器"""

    def __init__(self, db: DatabaseManager, clock: Optional[Clock] = None,
                 synchronizer: Optional[StatusSynchronizer] = None,
                 timezone_name: Optional[str] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.synchronizer = synchronizer or StatusSynchronizer(db, self.clock)
        self.tz = resolve_timezone(timezone_name or settings.timezone)

    def _resolve(self, session, member_id: Optional[int],
                 fingerprint_id) -> Member:
        if member_id is not None:
            member = self.db.members.get(member_id, session=session)
            if member is None:
                raise NotFoundError("Member not found")
            return member

        parsed = parse_fingerprint_id(fingerprint_id)
        if parsed is None:
            raise ValidationError("Invalid or missing fingerprint ID")
        member = self.db.members.get_by_fingerprint(parsed, session=session)
        if member is None:
            raise NotFoundError("No member found for this fingerprint ID")
        return member

    def record(self, member_id: Optional[int] = None, fingerprint_id=None,
               now: Optional[datetime] = None) -> CheckInResult:
        """记录一次签到。

        Args:
            member_id: 会员ID（与 fingerprint_id 二选一，优先使用）。
            fingerprint_id: 扫描得到的指纹ID。
            now: 当前时刻，默认取时钟。

        Returns:
            CheckInResult，outcome 为 denied / recorded / already_recorded。

        Raises:
            ValidationError: 未提供会员标识或指纹ID不合法。
            NotFoundError: 找不到对应会员。
        """
        now = now or self.clock.now()
        day = local_day(now, self.tz)

        with self.db.get_session() as session:
            member = self._resolve(session, member_id, fingerprint_id)
            status = self.synchronizer.synchronize(member, now, session=session)
            # 状态同步先落库，后面的插入失败回滚时不会把它一起撤销
            session.commit()
            if status != MemberStatus.ACTIVE.value:
                logger.warning(f"Check-in denied for member {member.id}: {status}")
                return CheckInResult(
                    outcome=CheckInOutcome.DENIED.value, status=status,
                    member=member
                )

            existing = self.db.attendance.get_for_day(member.id, day, session=session)
            if existing is not None:
                logger.debug(f"Member {member.id} already checked in on {day}")
                return CheckInResult(
                    outcome=CheckInOutcome.ALREADY_RECORDED.value,
                    status=status, member=member, record=existing
                )

            try:
                record = self.db.attendance.create(member.id, now, day, session=session)
                session.commit()
            except IntegrityError:
                # 并发的重复刷卡：唯一约束已拦截，返回先写入的那条
                session.rollback()
                session.refresh(member)
                record = self.db.attendance.get_for_day(member.id, day, session=session)
                return CheckInResult(
                    outcome=CheckInOutcome.ALREADY_RECORDED.value,
                    status=status, member=member, record=record
                )

        logger.info(f"Member {member.id} checked in at {now:%Y-%m-%d %H:%M:%S}")
        return CheckInResult(
            outcome=CheckInOutcome.RECORDED.value, status=status,
            member=member, record=record
        )

    def verify_access(self, fingerprint_id,
                      now: Optional[datetime] = None) -> CheckInResult:
        """只校验门禁权限，不写签到记录。

        Returns:
            CheckInResult，outcome 为 denied 或 granted。
        """
        now = now or self.clock.now()
        with self.db.get_session() as session:
            member = self._resolve(session, None, fingerprint_id)
            status = self.synchronizer.synchronize(member, now, session=session)
            session.commit()

        if status != MemberStatus.ACTIVE.value:
            logger.warning(f"Access denied for member {member.id}: {status}")
            outcome = CheckInOutcome.DENIED.value
        else:
            outcome = CheckInOutcome.GRANTED.value
        return CheckInResult(outcome=outcome, status=status, member=member)

    def today(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """当天签到的会员姓名。"""
        now = now or self.clock.now()
        day = local_day(now, self.tz)
        names: List[str] = self.db.attendance.names_for_day(day)
        return {"date": day.isoformat(), "attendance": names}
