"""实体仓库：会员与情侣组的数据访问层。

管理系统中的基础实体（会员、情侣组）。多记录变更（批量状态同步、
指纹回填、情侣组级联）全部以集合式 UPDATE 语句表达，由调用方在
同一个会话里决定提交或回滚，避免应用层"读-改-写"循环造成的更新丢失。

每个仓库继承 BaseCRUD 获得通用能力，并添加领域特定的查询方法。
"""
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy import or_, update, delete
from sqlalchemy.orm import Session

from .base_crud import BaseCRUD
from .connection import DatabaseConnection
from .models import Member, CoupleGroup, MemberStatus, MembershipType


class MemberRepository(BaseCRUD):
    """会员 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def get(self, member_id: int,
            session: Optional[Session] = None) -> Optional[Member]:
        """按ID获取会员。"""
        return self.get_by_id(Member, member_id, session=session)

    def get_by_fingerprint(self, fingerprint_id: int,
                           session: Optional[Session] = None
                           ) -> Optional[Member]:
        """按指纹ID获取会员。"""
        def _query(sess):
            return sess.query(Member).filter(
                Member.fingerprint_id == fingerprint_id
            ).first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def find_conflict(self, phone: Optional[str] = None,
                      email: Optional[str] = None,
                      fingerprint_id: Optional[int] = None,
                      exclude_id: Optional[int] = None,
                      session: Optional[Session] = None
                      ) -> Optional[Member]:
        """查找与给定手机号/邮箱/指纹ID冲突的会员。

        Args:
            phone: 手机号（可选）。
            email: 邮箱（可选）。
            fingerprint_id: 指纹ID（可选）。
            exclude_id: 排除的会员ID（更新资料时排除自己）。

        Returns:
            第一个冲突的会员，无冲突返回 None。
        """
        conditions = []
        if phone:
            conditions.append(Member.phone == phone)
        if email:
            conditions.append(Member.email == email)
        if fingerprint_id is not None:
            conditions.append(Member.fingerprint_id == fingerprint_id)
        if not conditions:
            return None

        def _query(sess):
            query = sess.query(Member).filter(or_(*conditions))
            if exclude_id is not None:
                query = query.filter(Member.id != exclude_id)
            return query.first()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def list_members(self, session: Optional[Session] = None) -> List[Member]:
        """获取全部会员，最新注册的在前。"""
        return self.get_all(
            Member, order_by=Member.created_at.desc(), session=session
        )

    # ================================================================
    # 指纹池
    # ================================================================

    def assigned_fingerprint_ids(self, session: Optional[Session] = None
                                 ) -> List[int]:
        """按升序返回已分配的指纹ID。"""
        def _query(sess):
            rows = sess.query(Member.fingerprint_id).filter(
                Member.fingerprint_id.isnot(None)
            ).order_by(Member.fingerprint_id.asc()).all()
            return [row[0] for row in rows]

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def without_fingerprint(self, session: Optional[Session] = None
                            ) -> List[Member]:
        """按注册顺序返回尚未分配指纹ID的会员。"""
        def _query(sess):
            return sess.query(Member).filter(
                Member.fingerprint_id.is_(None)
            ).order_by(Member.created_at.asc(), Member.id.asc()).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def assign_fingerprints(self, assignments: Dict[int, int],
                            session: Session) -> int:
        """批量写入指纹ID（按主键的 ORM 批量 UPDATE）。

        Args:
            assignments: 会员ID到指纹ID的映射。
            session: 外部会话（必填，由调用方提交）。

        Returns:
            写入的记录数。
        """
        if not assignments:
            return 0
        session.execute(
            update(Member),
            [
                {"id": member_id, "fingerprint_id": fingerprint_id}
                for member_id, fingerprint_id in assignments.items()
            ],
        )
        return len(assignments)

    # ================================================================
    # 状态同步
    # ================================================================

    def expire_lapsed(self, now: datetime, session: Session) -> int:
        """将已过期且未暂停的会员标记为 Expired。

        Returns:
            受影响的记录数。
        """
        result = session.execute(
            update(Member)
            .where(
                Member.status == MemberStatus.ACTIVE.value,
                Member.subscription_end_date < now,
            )
            .values(status=MemberStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def restore_renewed(self, now: datetime, session: Session) -> int:
        """将结束日期已回到未来的 Expired 会员恢复为 Active。

        Returns:
            受影响的记录数。
        """
        result = session.execute(
            update(Member)
            .where(
                Member.status == MemberStatus.EXPIRED.value,
                Member.subscription_end_date >= now,
            )
            .values(status=MemberStatus.ACTIVE.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def set_status_if(self, member_id: int, expected: str, new_status: str,
                      session: Session) -> int:
        """仅当当前状态仍为 expected 时更新状态（条件更新）。"""
        result = session.execute(
            update(Member)
            .where(Member.id == member_id, Member.status == expected)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ================================================================
    # 情侣组
    # ================================================================

    def couple_candidates(self, exclude_id: int,
                          search: Optional[str] = None,
                          limit: int = 30,
                          session: Optional[Session] = None
                          ) -> List[Member]:
        """未绑定的 Couple 套餐会员（排除自己），可按姓名模糊过滤。"""
        def _query(sess):
            query = sess.query(Member).filter(
                Member.id != exclude_id,
                Member.membership_type == MembershipType.COUPLE.value,
                Member.couple_group_id.is_(None),
            )
            if search:
                query = query.filter(Member.name.ilike(f"%{search}%"))
            return query.order_by(Member.name.asc()).limit(limit).all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def members_of_group(self, group_id: str,
                         session: Optional[Session] = None) -> List[Member]:
        """获取同一情侣组的全部会员。"""
        return self.get_all(
            Member, filters={"couple_group_id": group_id},
            order_by=Member.id.asc(), session=session
        )

    def claim_for_group(self, member_id: int, group_id: str,
                        partner_id: int, session: Session) -> int:
        """将未绑定的 Couple 会员写入情侣组（条件更新）。

        只有当会员仍是 Couple 套餐且尚未绑定时才会写入；返回 0 表示
        该会员在此期间已被其他请求绑定或改了套餐。
        """
        result = session.execute(
            update(Member)
            .where(
                Member.id == member_id,
                Member.couple_group_id.is_(None),
                Member.membership_type == MembershipType.COUPLE.value,
            )
            .values(couple_group_id=group_id, couple_partner_id=partner_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def update_group(self, group_id: str, session: Session,
                     **values: Any) -> int:
        """一条 UPDATE 更新情侣组内所有会员。

        Returns:
            受影响的记录数。
        """
        result = session.execute(
            update(Member)
            .where(Member.couple_group_id == group_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def delete_member(self, member: Member, session: Session) -> None:
        """删除会员（缴费与签到通过 ORM 级联一并删除）。"""
        session.delete(member)
        session.flush()


class CoupleGroupRepository(BaseCRUD):
    """情侣组 仓库。"""

    def __init__(self, conn: DatabaseConnection) -> None:
        super().__init__(conn)

    def create(self, group_id: str, member_a_id: int, member_b_id: int,
               session: Session) -> CoupleGroup:
        """创建情侣组记录。"""
        group = CoupleGroup(
            id=group_id, member_a_id=member_a_id, member_b_id=member_b_id
        )
        session.add(group)
        session.flush()
        return group

    def get(self, group_id: str,
            session: Optional[Session] = None) -> Optional[CoupleGroup]:
        """按组ID获取情侣组。"""
        return self.get_by_id(CoupleGroup, group_id, session=session)

    def dissolve(self, group_id: str, session: Session) -> int:
        """删除情侣组记录。"""
        result = session.execute(
            delete(CoupleGroup).where(CoupleGroup.id == group_id)
        )
        return result.rowcount or 0
