"""通用 CRUD 基类。

所有仓库继承 BaseCRUD 获得通用的增删改查能力。每个方法都接受一个
可选的外部会话：传入时只 flush 不 commit，由调用方决定事务边界；
不传时方法自己开会话并提交。
"""
from typing import Optional, List, Dict, Any, Type, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from .connection import DatabaseConnection

ModelT = TypeVar("ModelT")


class BaseCRUD:
    """通用 CRUD 操作。

    Attributes:
        conn: 数据库连接管理器。
    """

    def __init__(self, conn: DatabaseConnection) -> None:
        self.conn = conn

    def _get_session(self) -> Session:
        """获取新的数据库会话。"""
        return self.conn.get_session()

    def get_by_id(self, model: Type[ModelT], record_id: Any,
                  session: Optional[Session] = None) -> Optional[ModelT]:
        """按主键查询单条记录。

        Args:
            model: ORM 模型类。
            record_id: 主键值。
            session: 外部会话（可选）。

        Returns:
            记录对象，不存在返回 None。
        """
        if session:
            return session.get(model, record_id)

        with self._get_session() as sess:
            return sess.get(model, record_id)

    def get_all(self, model: Type[ModelT],
                filters: Optional[Dict[str, Any]] = None,
                order_by: Optional[Any] = None,
                session: Optional[Session] = None) -> List[ModelT]:
        """按等值条件查询记录列表。

        Args:
            model: ORM 模型类。
            filters: 字段名到值的等值过滤条件（可选）。
            order_by: 排序表达式（可选）。
            session: 外部会话（可选）。

        Returns:
            记录列表。
        """
        def _query(sess):
            query = sess.query(model)
            if filters:
                query = query.filter_by(**filters)
            if order_by is not None:
                query = query.order_by(order_by)
            return query.all()

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def count(self, model: Type[ModelT],
              filters: Optional[Dict[str, Any]] = None,
              session: Optional[Session] = None) -> int:
        """统计记录数。"""
        def _query(sess):
            query = sess.query(func.count()).select_from(model)
            if filters:
                query = query.filter_by(**filters)
            return query.scalar() or 0

        if session:
            return _query(session)

        with self._get_session() as sess:
            return _query(sess)

    def update_by_id(self, model: Type[ModelT], record_id: Any,
                     session: Optional[Session] = None,
                     **fields: Any) -> Optional[ModelT]:
        """按主键更新字段。

        Args:
            model: ORM 模型类。
            record_id: 主键值。
            session: 外部会话（可选）。
            **fields: 要更新的字段。

        Returns:
            更新后的记录对象，不存在返回 None。
        """
        def _do(sess):
            record = sess.get(model, record_id)
            if record is None:
                return None
            for key, value in fields.items():
                setattr(record, key, value)
            sess.flush()
            return record

        if session:
            return _do(session)

        with self._get_session() as sess:
            record = _do(sess)
            if record is not None:
                sess.commit()
            return record
