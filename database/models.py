"""SQLAlchemy ORM 模型定义。

本模块定义了健身房会员系统的所有数据库表，包括：
- 会员（身份信息 + 订阅信息 + 指纹ID + 情侣绑定）
- 缴费流水（只追加，不修改）
- 签到记录（每人每天最多一条）
- 情侣组（恰好两名会员的对称绑定关系）

唯一性约束（手机号、邮箱、指纹ID、签到日、情侣组成员）全部由数据库保证，
应用层的重复检查只是为了给出更友好的错误信息。
"""
from datetime import datetime, date, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Column, Integer, String, Text, Date, DateTime,
    DECIMAL, ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# 允许使用旧式类型注解（非 Mapped[]）
Base.__allow_unmapped__ = True

# 指纹模块硬件限制：ID 只能是 1..255
FINGERPRINT_MIN = 1
FINGERPRINT_MAX = 255


def utcnow() -> datetime:
    """当前 UTC 时间（naive），数据库中所有时间戳均使用此约定。"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MemberStatus(str, Enum):
    """会员生命周期状态。"""
    ACTIVE = "Active"
    EXPIRED = "Expired"
    SUSPENDED = "Suspended"


class MembershipType(str, Enum):
    """会员套餐类型。"""
    BASIC = "Basic"
    PREMIUM = "Premium"
    COUPLE = "Couple"
    STUDENT = "Student"
    CUSTOM = "Custom"


class CheckInOutcome(str, Enum):
    """签到结果。"""
    DENIED = "denied"
    GRANTED = "granted"
    RECORDED = "recorded"
    ALREADY_RECORDED = "already_recorded"


class Member(Base):
    """会员表模型。

    存储会员身份信息与订阅信息。订阅结束日期默认等于
    开始日期 + duration 个月，续费时会被覆盖。

    Attributes:
        id: 主键，自增整数。
        name: 姓名，必填。
        age: 年龄，1-100。
        phone: 手机号，仅数字，唯一。
        email: 邮箱，小写，可选，唯一。
        address: 地址。
        membership_type: 套餐类型，Basic/Premium/Couple/Student/Custom。
        duration: 办卡时长（月），1/3/6/12。
        subscription_start_date: 订阅开始时间。
        subscription_end_date: 订阅结束时间。
        payment_amount: 当前套餐金额。
        custom_amount: Custom 套餐的自定义金额，其他套餐为空。
        status: 状态，Active/Expired/Suspended。
        fingerprint_id: 指纹ID，1-255，可选，唯一。
        couple_group_id: 情侣组ID，可选。
        couple_partner_id: 情侣组中另一方的会员ID，可选。
        created_at: 创建时间（UTC）。
        updated_at: 更新时间（UTC）。

    Relationships:
        payments: 该会员的缴费流水。
        attendances: 该会员的签到记录。
    """
    __tablename__ = "members"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    name: str = Column(String(100), nullable=False)
    age: int = Column(Integer, nullable=False)
    phone: str = Column(String(20), nullable=False, unique=True)
    email: Optional[str] = Column(String(255), unique=True)
    address: str = Column(Text, nullable=False, default="")
    membership_type: str = Column(String(20), nullable=False)  # Basic / Premium / Couple / Student / Custom
    duration: int = Column(Integer, nullable=False, default=1)
    subscription_start_date: datetime = Column(DateTime, nullable=False, default=utcnow)
    subscription_end_date: datetime = Column(DateTime, nullable=False)
    payment_amount: float = Column(DECIMAL(10, 2), nullable=False)
    custom_amount: Optional[float] = Column(DECIMAL(10, 2))
    status: str = Column(String(20), nullable=False, default=MemberStatus.ACTIVE.value)
    fingerprint_id: Optional[int] = Column(Integer, unique=True)
    couple_group_id: Optional[str] = Column(String(36), index=True)
    couple_partner_id: Optional[int] = Column(Integer, ForeignKey("members.id"))
    created_at: datetime = Column(DateTime, default=utcnow)
    updated_at: datetime = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    payments: List["Payment"] = relationship(
        "Payment", back_populates="member", cascade="all, delete-orphan"
    )
    attendances: List["Attendance"] = relationship(
        "Attendance", back_populates="member", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            f"fingerprint_id IS NULL OR "
            f"(fingerprint_id >= {FINGERPRINT_MIN} AND fingerprint_id <= {FINGERPRINT_MAX})",
            name="ck_member_fingerprint_range",
        ),
        Index("ix_member_status_end", "status", "subscription_end_date"),
    )


class CoupleGroup(Base):
    """情侣组表模型。

    将"恰好两人、互相引用"的约束落到表结构上：一行即一组，
    member_a_id 为发起绑定的一方，member_b_id 为被选中的一方。

    Attributes:
        id: 组ID，不透明字符串（uuid4 hex）。
        member_a_id: 发起方会员ID，唯一。
        member_b_id: 被绑定方会员ID，唯一。
        created_at: 绑定时间（UTC）。
    """
    __tablename__ = "couple_groups"

    id: str = Column(String(36), primary_key=True)
    member_a_id: int = Column(Integer, ForeignKey("members.id"), nullable=False, unique=True)
    member_b_id: int = Column(Integer, ForeignKey("members.id"), nullable=False, unique=True)
    created_at: datetime = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("member_a_id <> member_b_id", name="ck_couple_distinct_members"),
    )

    def member_ids(self) -> List[int]:
        """组内两名会员的ID（有序）。"""
        return [self.member_a_id, self.member_b_id]


class Payment(Base):
    """缴费流水表模型（只追加）。

    Attributes:
        id: 主键，自增整数。
        member_id: 缴费会员ID。
        couple_group_id: 情侣续费时标记所属组，可选。
        amount: 金额。
        payment_method: 支付方式，Cash/UPI/Card/BankTransfer。
        duration: 本次缴费对应的月数。
        notes: 备注。
        created_at: 创建时间（UTC）。
    """
    __tablename__ = "payments"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    member_id: int = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    couple_group_id: Optional[str] = Column(String(36), index=True)  # 组解散后仍保留标记
    amount: float = Column(DECIMAL(10, 2), nullable=False)
    payment_method: str = Column(String(20), nullable=False, default="Cash")
    duration: int = Column(Integer, nullable=False, default=1)
    notes: Optional[str] = Column(Text)
    created_at: datetime = Column(DateTime, default=utcnow)

    # Relationships
    member: "Member" = relationship("Member", back_populates="payments")

    __table_args__ = (
        Index("ix_payment_member_created", "member_id", "created_at"),
    )


class Attendance(Base):
    """签到记录表模型。

    (member_id, check_in_day) 唯一：同一会员同一天最多一条签到。

    Attributes:
        id: 主键，自增整数。
        member_id: 会员ID。
        check_in_at: 签到时刻（UTC）。
        check_in_day: 签到所属自然日（按配置时区计算）。
    """
    __tablename__ = "attendances"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    member_id: int = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False)
    check_in_at: datetime = Column(DateTime, nullable=False, default=utcnow)
    check_in_day: date = Column(Date, nullable=False)

    # Relationships
    member: "Member" = relationship("Member", back_populates="attendances")

    __table_args__ = (
        UniqueConstraint("member_id", "check_in_day", name="uq_attendance_member_day"),
        Index("ix_attendance_day", "check_in_day"),
    )
