"""情侣会员绑定管理

两名各自已选择 Couple 套餐、且都未绑定的会员可以绑定为一个情侣组。
绑定只是确认步骤，不会单方面修改任何一方的套餐。

解绑（转为个人会员）一次性更新组内所有会员：套餐改为目标个人套餐，
组ID与对方引用清空。解绑不触碰订阅日期和金额。
"""
import uuid
from typing import Optional, List, Dict, Any

from loguru import logger
from sqlalchemy.exc import IntegrityError

from config.plan_config import PlanConfig, plan_config as default_plan_config
from database import DatabaseManager
from database.models import Member, MembershipType
from lifecycle.errors import (
    ValidationError, ConflictError, NotFoundError, ConsistencyFailure
)

CANDIDATE_LIMIT = 30


class CoupleLinkManager:
    """情侣组绑定/解绑管理器"""

    def __init__(self, db: DatabaseManager,
                 plans: Optional[PlanConfig] = None):
        self.db = db
        self.plans = plans or default_plan_config

    def link(self, member_id: int, partner_id: int) -> str:
        """绑定两名会员为情侣组。

        Args:
            member_id: 发起方会员ID。
            partner_id: 被选中的会员ID。

        Returns:
            新的情侣组ID。

        Raises:
            ValidationError: 自己绑定自己，或任一方不是 Couple 套餐。
            NotFoundError: 任一方不存在。
            ConflictError: 任一方已在其他情侣组中。
        """
        if partner_id is None or member_id == partner_id:
            raise ValidationError("Valid partner member is required")

        with self.db.get_session() as session:
            member = self.db.members.get(member_id, session=session)
            partner = self.db.members.get(partner_id, session=session)
            if member is None or partner is None:
                raise NotFoundError("Member/partner not found")

            couple = MembershipType.COUPLE.value
            if member.membership_type != couple or partner.membership_type != couple:
                raise ValidationError(
                    "Both members must have membership type set to Couple "
                    "before linking"
                )
            if member.couple_group_id or partner.couple_group_id:
                raise ConflictError(
                    "One of the selected members is already linked in a couple group"
                )

            group_id = uuid.uuid4().hex
            try:
                self.db.couples.create(group_id, member.id, partner.id, session=session)
                claimed = (
                    self.db.members.claim_for_group(
                        member.id, group_id, partner.id, session=session)
                    + self.db.members.claim_for_group(
                        partner.id, group_id, member.id, session=session)
                )
            except IntegrityError:
                claimed = 0
            if claimed != 2:
                session.rollback()
                raise ConflictError(
                    "One of the selected members is already linked in a couple group"
                )
            session.commit()

        logger.info(f"Linked members {member_id} and {partner_id} as couple {group_id}")
        return group_id

    def unlink(self, member_id: int, target_type: str = "Basic") -> int:
        """解除情侣绑定，组内所有会员转为个人套餐。

        未绑定的会员视为直接转为个人套餐。

        Args:
            member_id: 组内任一会员ID。
            target_type: 目标个人套餐（不能是 Couple）。

        Returns:
            受影响的会员数。

        Raises:
            ValidationError: 目标套餐不合法。
            NotFoundError: 会员不存在。
            ConsistencyFailure: 组记录缺失或组内会员数与组记录不符，已回滚。
        """
        if target_type not in self.plans.get_individual_types():
            raise ValidationError("Invalid individual membership type")

        with self.db.get_session() as session:
            member = self.db.members.get(member_id, session=session)
            if member is None:
                raise NotFoundError("Member not found")

            group_id = member.couple_group_id
            if not group_id:
                member.membership_type = target_type
                member.couple_partner_id = None
                session.commit()
                logger.info(f"Member {member_id} converted to {target_type}")
                return 1

            group = self.db.couples.get(group_id, session=session)
            if group is None:
                raise ConsistencyFailure(f"Couple group {group_id} has no group record")
            expected = len(group.member_ids())
            affected = self.db.members.update_group(
                group_id, session=session,
                membership_type=target_type,
                couple_group_id=None,
                couple_partner_id=None,
            )
            if affected != expected:
                session.rollback()
                logger.error(
                    f"Couple unlink for group {group_id} touched "
                    f"{affected} member(s), expected {expected}"
                )
                raise ConsistencyFailure("Couple unlink did not update every member")
            self.db.couples.dissolve(group_id, session=session)
            session.commit()

        logger.info(
            f"Couple {group_id} dissolved, {affected} member(s) converted to {target_type}"
        )
        return affected

    def candidates(self, member_id: int,
                   search: Optional[str] = None) -> List[Member]:
        """可供选择的绑定对象：未绑定的 Couple 套餐会员（排除自己）。

        Raises:
            NotFoundError: 会员不存在。
        """
        if self.db.members.get(member_id) is None:
            raise NotFoundError("Member not found")
        search = (search or "").strip() or None
        return self.db.members.couple_candidates(
            member_id, search=search, limit=CANDIDATE_LIMIT
        )

    def get_group(self, member_id: int) -> Optional[Dict[str, Any]]:
        """会员所在情侣组的成员与缴费流水，未绑定返回 None。

        Raises:
            NotFoundError: 会员不存在。
        """
        with self.db.get_session() as session:
            member = self.db.members.get(member_id, session=session)
            if member is None:
                raise NotFoundError("Member not found")
            if not member.couple_group_id:
                return None

            group_id = member.couple_group_id
            members = self.db.members.members_of_group(group_id, session=session)
            payments = self.db.payments.by_group(group_id, session=session)
            return {
                "group_id": group_id,
                "members": [self.db.member_to_dict(m) for m in members],
                "payments": [self.db.payments.to_dict(p) for p in payments],
            }
