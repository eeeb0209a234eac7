"""续费计算器 - 计算并应用新的订阅结束日期

锚点选择：
- 结束日期 <= now 或状态为 Expired：从 now 开始（已失效的会员没有剩余时间可以顺延）
- 否则：从当前结束日期开始，连续顺延

新结束日期 = 锚点 + N 个自然月。目标月份天数不足时取该月最后一天
（1 月 31 日 + 1 个月 = 2 月 28/29 日），不会溢出到下个月。

续费总是把状态设为 Active，包括 Suspended 会员：这是业务上对
"暂停状态不被自动恢复"规则的显式覆盖（缴费优先于暂停），
每次发生时都会记录一条 warning 日志。
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta
from loguru import logger

from config.plan_config import PlanConfig, plan_config as default_plan_config
from database import DatabaseManager
from database.models import Member, Payment, MemberStatus, MembershipType
from lifecycle.clock import Clock, SystemClock
from lifecycle.errors import (
    ValidationError, NotFoundError, ConsistencyFailure
)

MIN_RENEWAL_MONTHS = 1
MAX_RENEWAL_MONTHS = 12
COUPLE_GROUP_SIZE = 2


def add_months(instant: datetime, months: int) -> datetime:
    """按自然月加法，月末自动截断到目标月最后一天。"""
    return instant + relativedelta(months=months)


def validate_months(months) -> int:
    """校验续费月数为 1-12 的整数。"""
    if isinstance(months, bool) or not isinstance(months, int):
        raise ValidationError("Renewal months must be an integer")
    if months < MIN_RENEWAL_MONTHS or months > MAX_RENEWAL_MONTHS:
        raise ValidationError(
            f"Renewal months must be between {MIN_RENEWAL_MONTHS} "
            f"and {MAX_RENEWAL_MONTHS}"
        )
    return months


@dataclass(frozen=True)
class RenewalPlan:
    """续费计算结果"""
    anchor: datetime
    end_date: datetime


@dataclass
class RenewalResult:
    """续费执行结果"""
    member: Member
    plan: RenewalPlan
    payment: Payment
    affected: int


def compute_renewal(end_date: datetime, status: str, months: int,
                    now: datetime) -> RenewalPlan:
    """计算续费后的结束日期（纯函数）。

    Args:
        end_date: 当前订阅结束时间。
        status: 当前状态。
        months: 续费月数（1-12）。
        now: 当前时刻。

    Returns:
        RenewalPlan(anchor, end_date)。

    Raises:
        ValidationError: 月数不合法。
    """
    validate_months(months)
    if end_date <= now or status == MemberStatus.EXPIRED.value:
        anchor = now
    else:
        anchor = end_date
    return RenewalPlan(anchor=anchor, end_date=add_months(anchor, months))


class RenewalService:
    """续费服务

    在一个事务内完成：计算新结束日期、更新会员（含情侣组级联）、
    追加缴费流水。任何一步失败整个事务回滚。
    """

    def __init__(self, db: DatabaseManager, clock: Optional[Clock] = None,
                 plans: Optional[PlanConfig] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.plans = plans or default_plan_config

    def renew(self, member_id: int, months: int, amount: float,
              membership_type: Optional[str] = None,
              payment_method: str = "Cash",
              now: Optional[datetime] = None) -> RenewalResult:
        """为会员续费。

        Args:
            member_id: 会员ID。
            months: 续费月数（1-12）。
            amount: 缴费金额，必须大于 0。
            membership_type: 同时更换的套餐类型（可选）。
            payment_method: 支付方式。
            now: 当前时刻，默认取时钟。

        Returns:
            RenewalResult。

        Raises:
            ValidationError: 参数不合法。
            NotFoundError: 会员不存在。
            ConsistencyFailure: 情侣组级联更新的记录数不足，已回滚。
        """
        validate_months(months)
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount <= 0:
            raise ValidationError("Valid payment amount is required")
        if payment_method not in self.plans.get_payment_methods():
            raise ValidationError("Invalid payment method")
        if membership_type is not None and membership_type not in self.plans.get_membership_types():
            raise ValidationError("Invalid membership type")

        now = now or self.clock.now()

        with self.db.get_session() as session:
            member = self.db.members.get(member_id, session=session)
            if member is None:
                raise NotFoundError("Member not found")

            target_type = membership_type or member.membership_type
            group_id = member.couple_group_id
            if group_id and target_type != MembershipType.COUPLE.value:
                raise ValidationError(
                    "Linked couple members can only renew on the Couple plan; "
                    "convert to individual first"
                )

            plan = compute_renewal(
                member.subscription_end_date, member.status, months, now
            )
            if member.status == MemberStatus.SUSPENDED.value:
                logger.warning(
                    f"Renewal reactivates suspended member {member.id}"
                )

            values = {
                "subscription_end_date": plan.end_date,
                "status": MemberStatus.ACTIVE.value,
                "membership_type": target_type,
                "payment_amount": amount,
                "custom_amount": (
                    amount if target_type == MembershipType.CUSTOM.value else None
                ),
            }

            if group_id:
                affected = self.db.members.update_group(
                    group_id, session=session, **values
                )
                if affected != COUPLE_GROUP_SIZE:
                    session.rollback()
                    logger.error(
                        f"Couple renewal for group {group_id} touched "
                        f"{affected} member(s), expected {COUPLE_GROUP_SIZE}"
                    )
                    raise ConsistencyFailure(
                        "Couple renewal could not update both members"
                    )
            else:
                for key, value in values.items():
                    setattr(member, key, value)
                affected = 1

            prefix = "Couple " if group_id else ""
            payment = self.db.payments.record(
                member_id=member.id,
                amount=amount,
                payment_method=payment_method,
                duration=months,
                notes=(
                    f"{prefix}membership renewal - {months} month(s) - "
                    f"{target_type}"
                ),
                couple_group_id=group_id,
                session=session,
            )
            session.commit()
            session.refresh(member)

        logger.info(
            f"Renewed member {member_id} for {months} month(s) until "
            f"{plan.end_date:%Y-%m-%d} ({affected} record(s))"
        )
        return RenewalResult(
            member=member, plan=plan, payment=payment, affected=affected
        )
