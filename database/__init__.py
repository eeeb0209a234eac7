"""数据库模块 - 会员系统的持久化层

核心组件：
- DatabaseManager: 统一门面，组合所有子仓库
- DatabaseConnection: 引擎与会话管理
- models: ORM 模型（Member / Payment / Attendance / CoupleGroup）
"""
from database.manager import DatabaseManager
from database.connection import DatabaseConnection

__all__ = [
    "DatabaseManager",
    "DatabaseConnection",
]
