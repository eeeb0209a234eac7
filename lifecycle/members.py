"""会员服务 - 注册、资料修改、暂停/恢复、删除与缴费查询

注册时：
- 校验姓名、年龄、手机号、邮箱、套餐、时长、支付方式、开始日期
- 开启指纹录入要求时，必须带上指纹ID和录入凭证
- 手机号/邮箱/指纹ID 重复时返回冲突错误
- 结束日期 = 开始日期 + 时长（月），标准套餐金额由套餐配置推导
- 同一事务内写入会员和首笔缴费流水
"""
import re
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from dateutil import parser as date_parser
from loguru import logger
from sqlalchemy.exc import IntegrityError

from config.plan_config import PlanConfig, plan_config as default_plan_config
from config.settings import settings
from database import DatabaseManager
from database.models import Member, MemberStatus, MembershipType
from lifecycle.clock import Clock, SystemClock
from lifecycle.errors import ValidationError, ConflictError, NotFoundError
from lifecycle.fingerprints import FingerprintAllocator, parse_fingerprint_id
from lifecycle.renewal import add_months

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_PATTERN = re.compile(r"^[6-9]\d{9}$")
MIN_AGE = 1
MAX_AGE = 100

# 允许通过 update() 修改的字段
UPDATABLE_FIELDS = {
    "name", "age", "email", "phone", "address", "membership_type",
    "duration", "subscription_start_date", "custom_amount", "fingerprint_id",
}


def normalize_phone(phone) -> str:
    """去掉手机号中的非数字字符。"""
    if not isinstance(phone, str):
        return ""
    return re.sub(r"\D", "", phone)


def normalize_email(email) -> Optional[str]:
    """邮箱去空格并转小写，空值返回 None。"""
    if not isinstance(email, str):
        return None
    return email.strip().lower() or None


def _parse_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _parse_amount(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    return amount if amount > 0 else None


def parse_start_date(value, now: datetime) -> datetime:
    """解析订阅开始时间，统一为 naive UTC。

    Args:
        value: datetime 或 ISO 格式字符串；为空时使用 now。
        now: 当前时刻。

    Raises:
        ValidationError: 无法解析。
    """
    if value is None or value == "":
        return now
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = date_parser.isoparse(value.strip())
        except ValueError:
            raise ValidationError("Invalid subscription start date")
    else:
        raise ValidationError("Invalid subscription start date")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class MemberService:
    """会员服务"""

    def __init__(self, db: DatabaseManager, clock: Optional[Clock] = None,
                 plans: Optional[PlanConfig] = None,
                 allocator: Optional[FingerprintAllocator] = None,
                 require_enrollment: Optional[bool] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.plans = plans or default_plan_config
        self.allocator = allocator or FingerprintAllocator(db, self.clock)
        self.require_enrollment = (
            settings.require_fingerprint_enrollment
            if require_enrollment is None else require_enrollment
        )

    # ================================================================
    # 校验
    # ================================================================

    def _validate_age(self, value) -> int:
        age = _parse_int(value)
        if age is None or age < MIN_AGE or age > MAX_AGE:
            raise ValidationError(
                f"Age must be a number between {MIN_AGE} and {MAX_AGE}"
            )
        return age

    def _validate_phone(self, value) -> str:
        phone = normalize_phone(value)
        if not PHONE_PATTERN.match(phone):
            raise ValidationError(
                "Invalid phone number. Use a valid 10-digit Indian mobile number"
            )
        return phone

    def _validate_email(self, value) -> Optional[str]:
        email = normalize_email(value)
        if email and not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format")
        return email

    def _validate_type(self, value) -> str:
        if value not in self.plans.get_membership_types():
            raise ValidationError("Invalid membership type")
        return value

    def _validate_duration(self, value) -> int:
        duration = _parse_int(value)
        allowed = self.plans.get_durations()
        if duration not in allowed:
            raise ValidationError(
                "Duration must be " + ", ".join(str(d) for d in allowed[:-1])
                + f", or {allowed[-1]} months"
            )
        return duration

    def _check_duplicates(self, session, phone: Optional[str] = None,
                          email: Optional[str] = None,
                          fingerprint_id: Optional[int] = None,
                          exclude_id: Optional[int] = None) -> None:
        existing = self.db.members.find_conflict(
            phone=phone, email=email, fingerprint_id=fingerprint_id,
            exclude_id=exclude_id, session=session
        )
        if existing is None:
            return
        if phone and existing.phone == phone:
            raise ConflictError("Member with this phone number already exists")
        if email and existing.email == email:
            raise ConflictError("Member with this email already exists")
        raise ConflictError("Fingerprint ID is already assigned to another member")

    def _commit(self, session) -> None:
        """提交会话，唯一约束冲突转换为 ConflictError。"""
        try:
            session.commit()
        except IntegrityError as e:
            session.rollback()
            logger.warning(f"Integrity error on member write: {e.orig}")
            raise ConflictError("Duplicate value for phone/email/fingerprint ID")

    def _get_or_raise(self, session, member_id: int) -> Member:
        member = self.db.members.get(member_id, session=session)
        if member is None:
            raise NotFoundError("Member not found")
        return member

    # ================================================================
    # 注册
    # ================================================================

    def register(self, name: str, age, phone: str, address: str,
                 membership_type: str, duration=1,
                 email: Optional[str] = None,
                 payment_method: str = "Cash",
                 custom_amount=None,
                 subscription_start_date=None,
                 fingerprint_id=None,
                 fingerprint_token: Optional[str] = None,
                 now: Optional[datetime] = None) -> Member:
        """注册新会员并记录首笔缴费。

        Args:
            name: 姓名。
            age: 年龄（1-100）。
            phone: 手机号，会去掉非数字字符。
            address: 地址。
            membership_type: 套餐类型。
            duration: 办卡时长（月）。
            email: 邮箱（可选）。
            payment_method: 支付方式。
            custom_amount: Custom 套餐金额。
            subscription_start_date: 开始时间，默认当前时刻。
            fingerprint_id: 录入得到的指纹ID。
            fingerprint_token: 录入凭证。
            now: 当前时刻，默认取时钟。

        Returns:
            新建的会员对象。

        Raises:
            ValidationError: 参数不合法或录入凭证无效。
            ConflictError: 手机号、邮箱或指纹ID重复。
        """
        now = now or self.clock.now()
        name = name.strip() if isinstance(name, str) else ""
        address = address.strip() if isinstance(address, str) else ""
        if not name or not address:
            raise ValidationError("Invalid required fields")

        age = self._validate_age(age)
        membership_type = self._validate_type(membership_type)
        duration = self._validate_duration(duration)

        parsed_fp = parse_fingerprint_id(fingerprint_id)
        if parsed_fp is None and self.require_enrollment:
            raise ValidationError("Fingerprint scan is required before registration")
        if parsed_fp is not None and (self.require_enrollment or fingerprint_token):
            self.allocator.verify_proof(fingerprint_token, parsed_fp, now=now)

        email = self._validate_email(email)
        phone = self._validate_phone(phone)
        start = parse_start_date(subscription_start_date, now)
        if payment_method not in self.plans.get_payment_methods():
            raise ValidationError("Invalid payment method")

        if membership_type == MembershipType.CUSTOM.value:
            amount = _parse_amount(custom_amount)
            if amount is None:
                raise ValidationError("Custom plan requires a valid positive amount")
            custom = amount
        else:
            amount = self.plans.price_for(membership_type)
            custom = None

        with self.db.get_session() as session:
            self._check_duplicates(
                session, phone=phone, email=email, fingerprint_id=parsed_fp
            )
            member = Member(
                name=name,
                age=age,
                phone=phone,
                email=email,
                address=address,
                membership_type=membership_type,
                duration=duration,
                subscription_start_date=start,
                subscription_end_date=add_months(start, duration),
                payment_amount=amount,
                custom_amount=custom,
                status=MemberStatus.ACTIVE.value,
                fingerprint_id=parsed_fp,
                created_at=now,
            )
            session.add(member)
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                raise ConflictError("Duplicate value for phone/email/fingerprint ID")

            self.db.payments.record(
                member_id=member.id,
                amount=amount,
                payment_method=payment_method,
                duration=duration,
                notes=f"Initial payment for {duration} month(s) during registration",
                session=session,
            )
            self._commit(session)
            session.refresh(member)

        logger.info(
            f"Registered member {member.id} ({membership_type}, {duration} month(s), "
            f"fingerprint {parsed_fp})"
        )
        return member

    # ================================================================
    # 资料修改
    # ================================================================

    def update(self, member_id: int, **changes: Any) -> Member:
        """修改会员资料（仅限白名单字段）。

        套餐变化时重新推导金额；开始日期或时长变化时重新计算结束日期。
        自定义金额只适用于 Custom 套餐，不会隐式切换套餐。
        情侣组成员不能在这里改成个人套餐，需要先解绑。

        Raises:
            ValidationError: 字段不合法。
            NotFoundError: 会员不存在。
            ConflictError: 手机号、邮箱或指纹ID与其他会员重复。
        """
        data = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}
        ignored = set(changes) - UPDATABLE_FIELDS
        if ignored:
            logger.debug(f"Ignoring non-updatable fields: {sorted(ignored)}")

        if "name" in data:
            data["name"] = data["name"].strip() if isinstance(data["name"], str) else ""
            if not data["name"]:
                raise ValidationError("Name cannot be empty")
        if "address" in data and isinstance(data["address"], str):
            data["address"] = data["address"].strip()
        if "age" in data:
            data["age"] = self._validate_age(data["age"])
        if "phone" in data:
            data["phone"] = self._validate_phone(data["phone"])
        if "email" in data:
            data["email"] = self._validate_email(data["email"])
        if "fingerprint_id" in data:
            data["fingerprint_id"] = parse_fingerprint_id(data["fingerprint_id"])
        if "duration" in data:
            data["duration"] = self._validate_duration(data["duration"])
        if "membership_type" in data:
            data["membership_type"] = self._validate_type(data["membership_type"])

        plan_type = data.get("membership_type")
        custom_given = data.get("custom_amount") is not None
        if not plan_type and not custom_given:
            data.pop("custom_amount", None)
        if plan_type and plan_type != MembershipType.CUSTOM.value:
            if custom_given:
                raise ValidationError("Custom amount requires membership type Custom")
            data["payment_amount"] = self.plans.price_for(plan_type)
            data["custom_amount"] = None
        elif plan_type == MembershipType.CUSTOM.value or custom_given:
            amount = _parse_amount(data.get("custom_amount"))
            if amount is None:
                raise ValidationError("Custom plan requires a positive custom amount")
            data["payment_amount"] = amount
            data["custom_amount"] = amount

        with self.db.get_session() as session:
            member = self._get_or_raise(session, member_id)
            # 只改金额不改套餐时，会员本身必须已是 Custom 套餐
            if (custom_given and not plan_type
                    and member.membership_type != MembershipType.CUSTOM.value):
                raise ValidationError("Custom amount requires membership type Custom")

            if "subscription_start_date" in data:
                data["subscription_start_date"] = parse_start_date(
                    data["subscription_start_date"], member.subscription_start_date
                )

            new_type = data.get("membership_type")
            if (member.couple_group_id and new_type
                    and new_type != MembershipType.COUPLE.value):
                raise ValidationError(
                    "Linked couple members must be converted to an individual plan "
                    "via unlink"
                )

            self._check_duplicates(
                session,
                phone=data.get("phone"),
                email=data.get("email"),
                fingerprint_id=data.get("fingerprint_id"),
                exclude_id=member.id,
            )

            if "duration" in data or "subscription_start_date" in data:
                start = data.get("subscription_start_date", member.subscription_start_date)
                duration = data.get("duration", member.duration)
                data["subscription_end_date"] = add_months(start, duration)

            for key, value in data.items():
                setattr(member, key, value)
            self._commit(session)
            session.refresh(member)

        logger.info(f"Updated member {member_id}: {sorted(data)}")
        return member

    # ================================================================
    # 暂停 / 恢复
    # ================================================================

    def suspend(self, member_id: int) -> Member:
        """暂停会员。暂停状态不会被状态同步器自动恢复。"""
        with self.db.get_session() as session:
            member = self._get_or_raise(session, member_id)
            member.status = MemberStatus.SUSPENDED.value
            session.commit()
        logger.info(f"Member {member_id} suspended")
        return member

    def reactivate(self, member_id: int, now: Optional[datetime] = None) -> Member:
        """恢复会员，状态按结束日期重新推导（已过期的恢复为 Expired）。"""
        now = now or self.clock.now()
        with self.db.get_session() as session:
            member = self._get_or_raise(session, member_id)
            if member.subscription_end_date < now:
                member.status = MemberStatus.EXPIRED.value
            else:
                member.status = MemberStatus.ACTIVE.value
            session.commit()
        logger.info(f"Member {member_id} reactivated as {member.status}")
        return member

    # ================================================================
    # 删除
    # ================================================================

    def delete(self, member_id: int) -> None:
        """删除会员及其缴费、签到记录；所在情侣组一并解散。

        对方会员保留 Couple 套餐，但不再绑定。指纹ID随之释放。
        """
        with self.db.get_session() as session:
            member = self._get_or_raise(session, member_id)
            group_id = member.couple_group_id
            if group_id:
                self.db.members.update_group(
                    group_id, session=session,
                    couple_group_id=None, couple_partner_id=None,
                )
                self.db.couples.dissolve(group_id, session=session)
            self.db.members.delete_member(member, session=session)
            session.commit()

        if group_id:
            logger.info(f"Couple {group_id} dissolved by deletion of member {member_id}")
        logger.info(f"Member {member_id} deleted")

    # ================================================================
    # 查询
    # ================================================================

    def get(self, member_id: int) -> Member:
        """按ID获取会员。"""
        member = self.db.members.get(member_id)
        if member is None:
            raise NotFoundError("Member not found")
        return member

    def list(self) -> List[Member]:
        """全部会员，最新注册的在前。"""
        return self.db.members.list_members()

    def payments(self, member_id: int) -> Dict[str, Any]:
        """会员缴费历史（最新的在前）及合计金额。"""
        self.get(member_id)
        payments = [
            self.db.payments.to_dict(p)
            for p in self.db.payments.by_member(member_id)
        ]
        return {
            "payments": payments,
            "total": len(payments),
            "total_amount": sum(p["amount"] for p in payments),
        }
