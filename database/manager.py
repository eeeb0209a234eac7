"""数据库管理器：统一门面（Facade）。

DatabaseManager 是 database 模块的统一入口，组合了所有子仓库，
提供两套 API：

1. **子仓库访问**（细粒度）：
   通过 ``db.members``、``db.payments`` 等属性直接访问子仓库，
   返回 ORM 对象，适合生命周期服务在同一个会话里编排多步操作。

2. **便捷方法**（粗粒度）：
   提供扁平化的方法（如 ``get_member_info()``），
   返回字典/基本类型，适合上层展示代码和 API 调用。
"""
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from .connection import DatabaseConnection
from .entity_repos import MemberRepository, CoupleGroupRepository
from .business_repos import PaymentRepository, AttendanceRepository
from .models import Member


class DatabaseManager:
    """数据库管理器：统一门面。

    Attributes:
        conn: 数据库连接管理器。
        members: 会员仓库。
        couples: 情侣组仓库。
        payments: 缴费流水仓库。
        attendance: 签到记录仓库。

    Example::

        db = DatabaseManager("sqlite:///data/gym.db")
        db.create_tables()

        # 通过子仓库访问（返回 ORM 对象）
        member = db.members.get_by_fingerprint(12)

        # 通过便捷方法访问（返回字典）
        info = db.get_member_info(member.id)
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        """初始化数据库管理器。

        Args:
            database_url: 数据库连接URL。如果为None则使用settings配置。
        """
        # 基础设施层
        self.conn = DatabaseConnection(database_url)

        # 实体仓库
        self.members = MemberRepository(self.conn)
        self.couples = CoupleGroupRepository(self.conn)

        # 业务记录仓库
        self.payments = PaymentRepository(self.conn)
        self.attendance = AttendanceRepository(self.conn)

    # ================================================================
    # 基础设施方法
    # ================================================================

    def create_tables(self) -> None:
        """创建所有数据库表（幂等操作）。"""
        self.conn.create_tables()

    def get_session(self) -> Session:
        """获取数据库会话。"""
        return self.conn.get_session()

    @property
    def database_url(self) -> str:
        """数据库连接URL。"""
        return self.conn.database_url

    @property
    def engine(self):
        """SQLAlchemy 引擎对象。"""
        return self.conn.engine

    def close(self) -> None:
        """关闭数据库连接，释放所有资源。"""
        self.conn.close()

    # ================================================================
    # 便捷查询方法
    # ================================================================

    @staticmethod
    def member_to_dict(member: Member) -> Dict[str, Any]:
        """会员对象转为字典。"""
        return {
            "id": member.id,
            "name": member.name,
            "age": member.age,
            "phone": member.phone,
            "email": member.email,
            "address": member.address,
            "membership_type": member.membership_type,
            "duration": member.duration,
            "subscription_start_date": member.subscription_start_date,
            "subscription_end_date": member.subscription_end_date,
            "payment_amount": (
                float(member.payment_amount)
                if member.payment_amount is not None else None
            ),
            "custom_amount": (
                float(member.custom_amount)
                if member.custom_amount is not None else None
            ),
            "status": member.status,
            "fingerprint_id": member.fingerprint_id,
            "couple_group_id": member.couple_group_id,
            "couple_partner_id": member.couple_partner_id,
        }

    def get_member_info(self, member_id: int) -> Optional[Dict[str, Any]]:
        """按ID查询会员信息。

        Returns:
            会员信息字典，不存在返回 None。
        """
        member = self.members.get(member_id)
        if member is None:
            return None
        return self.member_to_dict(member)

    def get_member_list(self) -> List[Dict[str, Any]]:
        """获取全部会员信息，最新注册的在前。"""
        return [self.member_to_dict(m) for m in self.members.list_members()]
