"""时钟 - 生命周期逻辑唯一的时间来源

所有生命周期逻辑在给定时间值的前提下都是纯函数，
当前时间统一从 Clock 获取，测试中可替换为 FixedClock。
时间约定：naive UTC datetime；"自然日"按配置的时区计算。
"""
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from database.models import utcnow


def resolve_timezone(name: str) -> tzinfo:
    """时区名转为 tzinfo，UTC 不依赖系统时区库。"""
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def local_day(instant: datetime, tz: tzinfo) -> date:
    """naive UTC 时刻在指定时区下所属的自然日。"""
    return instant.replace(tzinfo=timezone.utc).astimezone(tz).date()


class Clock(ABC):
    """时钟抽象基类"""

    @abstractmethod
    def now(self) -> datetime:
        """当前时刻（naive UTC）"""
        pass


class SystemClock(Clock):
    """系统时钟"""

    def now(self) -> datetime:
        return utcnow()


class FixedClock(Clock):
    """固定时钟，可手动拨动，用于测试和回放"""

    def __init__(self, instant: Optional[datetime] = None) -> None:
        self._instant = instant or utcnow()

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        """拨到指定时刻"""
        self._instant = instant

    def advance(self, **kwargs) -> datetime:
        """向前拨动，参数同 timedelta"""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant
