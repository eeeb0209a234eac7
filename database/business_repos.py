"""业务记录仓库：缴费流水与签到记录的数据访问层。

这些记录是日常经营活动产生的交易数据：缴费流水只追加不修改，
签到记录每人每天最多一条（由唯一约束保证）。
"""
from datetime import date, datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Payment, Attendance, Member


class PaymentRepository(BaseCRUD):
    """缴费流水 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def record(self, member_id: int, amount: float,
               payment_method: str = "Cash", duration: int = 1,
               notes: Optional[str] = None,
               couple_group_id: Optional[str] = None,
               session: Optional[Session] = None) -> Payment:
        """追加一条缴费流水。

        Args:
            member_id: 缴费会员ID。
            amount: 金额。
            payment_method: 支付方式。
            duration: 对应月数。
            notes: 备注（可选）。
            couple_group_id: 情侣组标记（可选）。
            session: 外部会话（可选）。

        Returns:
            新建的 Payment 对象。
        """
        def _do(sess):
            payment = Payment(
                member_id=member_id,
                couple_group_id=couple_group_id,
                amount=amount,
                payment_method=payment_method,
                duration=duration,
                notes=notes,
            )
            sess.add(payment)
            sess.flush()
            return payment

        if session:
            return _do(session)

        with self._get_session() as sess:
            payment = _do(sess)
            sess.commit()
            return payment

    def by_member(self, member_id: int,
                  session: Optional[Session] = None) -> List[Payment]:
        """会员的缴费流水，最新的在前。"""
        return self.get_all(
            Payment, filters={"member_id": member_id},
            order_by=Payment.created_at.desc(), session=session
        )

    def by_group(self, group_id: str,
                 session: Optional[Session] = None) -> List[Payment]:
        """带情侣组标记的缴费流水，最新的在前。"""
        return self.get_all(
            Payment, filters={"couple_group_id": group_id},
            order_by=Payment.created_at.desc(), session=session
        )

    @staticmethod
    def to_dict(payment: Payment) -> Dict[str, Any]:
        """缴费流水转为字典。"""
        return {
            "id": payment.id,
            "member_id": payment.member_id,
            "couple_group_id": payment.couple_group_id,
            "amount": float(payment.amount),
            "payment_method": payment.payment_method,
            "duration": payment.duration,
            "notes": payment.notes,
            "created_at": payment.created_at,
        }


class AttendanceRepository(BaseCRUD):
    """签到记录 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get_for_day(self, member_id: int, day: date,
                    session: Optional[Session] = None
                    ) -> Optional[Attendance]:
        """获取会员在某一天的签到记录。"""
        def _query(sess):
            return sess.query(Attendance).filter(
                Attendance.member_id == member_id,
                Attendance.check_in_day == day,
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def create(self, member_id: int, check_in_at: datetime, day: date,
               session: Session) -> Attendance:
        """新建签到记录（同日重复由唯一约束拦截）。"""
        attendance = Attendance(
            member_id=member_id, check_in_at=check_in_at, check_in_day=day
        )
        session.add(attendance)
        session.flush()
        return attendance

    def names_for_day(self, day: date,
                      session: Optional[Session] = None) -> List[str]:
        """某一天签到的会员姓名，按签到时间排序。"""
        def _query(sess):
            rows = sess.query(Member.name).join(
                Attendance, Attendance.member_id == Member.id
            ).filter(
                Attendance.check_in_day == day
            ).order_by(Attendance.check_in_at.asc()).all()
            return [row[0] for row in rows]

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)
