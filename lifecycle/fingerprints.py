"""指纹ID池分配器

ID 空间为 1..255（外部指纹模块的硬件限制）。两条分配路径：

1. 显式录入：设备扫描得到候选ID，校验范围与占用情况后签发一个
   短期有效的录入凭证（HS256 JWT），注册完成时必须出示该凭证，
   防止过期或重放的ID被挂到另一次注册上。
2. 批量回填：给没有指纹ID的老会员按注册顺序依次分配最小的空闲ID，
   ID 用完即停止（部分成功，不报错）。

唯一性由数据库唯一约束兜底；这里的占用检查只是为了尽早给出友好错误。
释放是隐式的：删除会员或清空其指纹ID后，该ID即可被再次分配。
"""
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from jose import jwt
from jose.exceptions import JWTError
from loguru import logger
from sqlalchemy.orm import Session

from config.settings import settings
from database import DatabaseManager
from database.models import FINGERPRINT_MIN, FINGERPRINT_MAX
from lifecycle.clock import Clock, SystemClock
from lifecycle.errors import (
    ValidationError, ConflictError, ResourceExhaustedError,
    UnauthorizedDeviceError
)

ENROLL_PURPOSE = "fingerprint_enroll"
TOKEN_ALGORITHM = "HS256"


def parse_fingerprint_id(value) -> Optional[int]:
    """解析候选指纹ID。

    Args:
        value: 原始输入（整数、整数值浮点数或数字字符串）。

    Returns:
        合法的指纹ID；输入为空（None/空串）返回 None。

    Raises:
        ValidationError: 不是整数或超出 1-255。
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationError("Fingerprint ID must be an integer between 1 and 255")

    parsed = None
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, float) and value.is_integer():
        parsed = int(value)
    elif isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            parsed = None

    if parsed is None or parsed < FINGERPRINT_MIN or parsed > FINGERPRINT_MAX:
        raise ValidationError("Fingerprint ID must be an integer between 1 and 255")
    return parsed


def _timestamp(instant: datetime) -> int:
    """naive UTC 时刻转 Unix 时间戳。"""
    return int(instant.replace(tzinfo=timezone.utc).timestamp())


class FingerprintPool:
    """指纹ID占用索引（位图）

    第 i 位为 1 表示 ID i 已被占用；第 0 位恒为 1，
    因此"最小空闲ID"就是最低的 0 位。
    """

    def __init__(self, used: Iterable[int] = ()) -> None:
        self._bits = 1
        for fingerprint_id in used:
            self.reserve(fingerprint_id)

    def is_taken(self, fingerprint_id: int) -> bool:
        return bool(self._bits >> fingerprint_id & 1)

    def reserve(self, fingerprint_id: int) -> None:
        self._bits |= 1 << fingerprint_id

    def release(self, fingerprint_id: int) -> None:
        if fingerprint_id >= FINGERPRINT_MIN:
            self._bits &= ~(1 << fingerprint_id)

    def lowest_free(self) -> Optional[int]:
        """最小的空闲ID，池满返回 None。"""
        free = ~self._bits
        lowest = (free & -free).bit_length() - 1
        if lowest > FINGERPRINT_MAX:
            return None
        return lowest

    def used_count(self) -> int:
        mask = (1 << (FINGERPRINT_MAX + 1)) - 2
        return bin(self._bits & mask).count("1")

    def available_count(self) -> int:
        return FINGERPRINT_MAX - self.used_count()


@dataclass(frozen=True)
class Allocation:
    """显式录入结果"""
    fingerprint_id: int
    proof_token: str
    expires_at: datetime


class EnrollmentTokenSigner:
    """录入凭证签发与校验

    凭证绑定用途（fingerprint_enroll）与指纹ID，过期时间在校验时
    按注入的时钟判断，不依赖任何后台定时器。
    """

    def __init__(self, secret: str, ttl_minutes: int, clock: Clock) -> None:
        if not secret:
            raise ValueError("Fingerprint token secret is not set")
        self.secret = secret
        self.ttl = timedelta(minutes=ttl_minutes)
        self.clock = clock

    def issue(self, fingerprint_id: int,
              now: Optional[datetime] = None) -> Allocation:
        now = now or self.clock.now()
        expires_at = now + self.ttl
        token = jwt.encode(
            {
                "purpose": ENROLL_PURPOSE,
                "fingerprint_id": fingerprint_id,
                "iat": _timestamp(now),
                "exp": _timestamp(expires_at),
            },
            self.secret,
            algorithm=TOKEN_ALGORITHM,
        )
        return Allocation(
            fingerprint_id=fingerprint_id, proof_token=token,
            expires_at=expires_at
        )

    def verify(self, token: str, fingerprint_id: int,
               now: Optional[datetime] = None) -> int:
        """校验凭证的签名、用途、指纹ID与有效期。

        Raises:
            ValidationError: 凭证缺失、无效、过期或与ID不符。
        """
        if not token:
            raise ValidationError("Missing fingerprint scan token")
        try:
            payload = jwt.decode(
                token, self.secret, algorithms=[TOKEN_ALGORITHM],
                options={"verify_exp": False}
            )
        except JWTError:
            raise ValidationError("Fingerprint scan token expired or invalid")

        now = now or self.clock.now()
        expires = payload.get("exp")
        if not isinstance(expires, int) or expires <= _timestamp(now):
            raise ValidationError("Fingerprint scan token expired or invalid")
        if (payload.get("purpose") != ENROLL_PURPOSE
                or payload.get("fingerprint_id") != fingerprint_id):
            raise ValidationError("Invalid fingerprint scan token")
        return fingerprint_id


class FingerprintAllocator:
    """指纹ID池分配器"""

    def __init__(self, db: DatabaseManager, clock: Optional[Clock] = None,
                 secret: Optional[str] = None,
                 ttl_minutes: Optional[int] = None,
                 device_key: Optional[str] = None):
        self.db = db
        self.clock = clock or SystemClock()
        self.device_key = (
            settings.fingerprint_device_key if device_key is None else device_key
        )
        self.signer = EnrollmentTokenSigner(
            secret or settings.fingerprint_token_secret,
            ttl_minutes or settings.fingerprint_token_ttl_minutes,
            self.clock,
        )

    def pool(self, session: Optional[Session] = None) -> FingerprintPool:
        """根据当前已分配的ID构建占用索引。"""
        return FingerprintPool(
            self.db.members.assigned_fingerprint_ids(session=session)
        )

    def check_device(self, presented_key: Optional[str]) -> None:
        """校验设备密钥（未配置密钥时跳过）。"""
        if not self.device_key:
            return
        if not presented_key or not hmac.compare_digest(
            presented_key.encode("utf-8"), self.device_key.encode("utf-8")
        ):
            raise UnauthorizedDeviceError("Unauthorized fingerprint device")

    def allocate(self, candidate=None, device_key: Optional[str] = None,
                 now: Optional[datetime] = None) -> Allocation:
        """显式录入：预留一个指纹ID并签发录入凭证。

        Args:
            candidate: 设备扫描得到的候选ID；为空时分配最小空闲ID。
            device_key: 设备请求头中的密钥。
            now: 当前时刻，默认取时钟。

        Returns:
            Allocation(fingerprint_id, proof_token, expires_at)。

        Raises:
            UnauthorizedDeviceError: 设备密钥不正确。
            ValidationError: 候选ID不是 1-255 的整数。
            ConflictError: 候选ID已被其他会员占用。
            ResourceExhaustedError: 未给出候选ID且ID池已满。
        """
        self.check_device(device_key)
        fingerprint_id = parse_fingerprint_id(candidate)
        pool = self.pool()

        if fingerprint_id is None:
            fingerprint_id = pool.lowest_free()
            if fingerprint_id is None:
                logger.warning("Fingerprint pool exhausted")
                raise ResourceExhaustedError(
                    "No fingerprint IDs available (1-255 all assigned)"
                )
        elif pool.is_taken(fingerprint_id):
            raise ConflictError(
                "Fingerprint ID already registered. Please retry scan."
            )

        allocation = self.signer.issue(fingerprint_id, now=now)
        logger.info(f"Fingerprint ID {fingerprint_id} reserved for enrollment")
        return allocation

    def verify_proof(self, token: str, fingerprint_id: int,
                     now: Optional[datetime] = None) -> int:
        """注册完成时校验录入凭证。"""
        return self.signer.verify(token, fingerprint_id, now=now)

    def backfill(self) -> int:
        """给没有指纹ID的会员按注册顺序回填最小空闲ID。

        所有分配在一个事务里批量写入；ID 用完后停止，剩余会员保持未分配。

        Returns:
            本次分配的会员数。
        """
        with self.db.get_session() as session:
            pool = self.pool(session=session)
            pending = self.db.members.without_fingerprint(session=session)

            assignments = {}
            for member in pending:
                fingerprint_id = pool.lowest_free()
                if fingerprint_id is None:
                    break
                pool.reserve(fingerprint_id)
                assignments[member.id] = fingerprint_id

            assigned = self.db.members.assign_fingerprints(
                assignments, session=session
            )
            session.commit()

        skipped = len(pending) - assigned
        if skipped:
            logger.warning(
                f"Fingerprint backfill stopped: pool exhausted, "
                f"{skipped} member(s) left without an ID"
            )
        logger.info(f"Fingerprint backfill assigned {assigned} ID(s)")
        return assigned
