"""状态同步器 - 让会员状态与日历时间保持一致

规则：
- 结束日期 < now 且未暂停 → Expired
- 状态为 Expired 但结束日期 >= now → Active
- Suspended 对同步器是粘性的，只能由显式的恢复操作退出

结束日期恰好等于 now 时视为未过期（严格小于比较）。
"""
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from database import DatabaseManager
from database.models import Member, MemberStatus
from lifecycle.clock import Clock, SystemClock


def compute_status(status: str, end_date: datetime, now: datetime) -> str:
    """根据结束日期推导状态（纯函数）。

    Args:
        status: 当前状态。
        end_date: 订阅结束时间。
        now: 当前时刻。

    Returns:
        同步后的状态。
    """
    if status == MemberStatus.SUSPENDED.value:
        return status
    if end_date < now:
        return MemberStatus.EXPIRED.value
    return MemberStatus.ACTIVE.value


class StatusSynchronizer:
    """会员状态同步器

    幂等：没有记录需要变化时不产生任何写入。
    """

    def __init__(self, db: DatabaseManager, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or SystemClock()

    def synchronize(self, member: Member, now: Optional[datetime] = None,
                    session: Optional[Session] = None) -> str:
        """重新计算单个会员的状态（签到路径使用，不做全表扫描）。

        只在状态发生变化时写库，且使用条件更新，避免覆盖
        其他请求刚写入的状态（例如刚被暂停）。

        Args:
            member: 会员对象，状态会在内存中同步更新。
            now: 当前时刻，默认取时钟。
            session: 外部会话（可选）。

        Returns:
            同步后的状态。
        """
        now = now or self.clock.now()
        previous = member.status
        current = compute_status(previous, member.subscription_end_date, now)
        if current == previous:
            return current

        if session:
            self.db.members.set_status_if(member.id, previous, current, session=session)
        else:
            with self.db.get_session() as sess:
                self.db.members.set_status_if(member.id, previous, current, session=sess)
                sess.commit()

        set_committed_value(member, "status", current)
        logger.info(f"Member {member.id} status {previous} -> {current}")
        return current

    def synchronize_all(self, now: Optional[datetime] = None) -> int:
        """批量同步全部会员状态。

        两条条件 UPDATE 在同一个事务中执行。

        Returns:
            状态发生变化的会员数。
        """
        now = now or self.clock.now()
        with self.db.get_session() as session:
            expired = self.db.members.expire_lapsed(now, session=session)
            restored = self.db.members.restore_renewed(now, session=session)
            session.commit()

        changed = expired + restored
        if changed:
            logger.info(
                f"Status sync: {expired} expired, {restored} restored to Active"
            )
        else:
            logger.debug("Status sync: no changes")
        return changed
