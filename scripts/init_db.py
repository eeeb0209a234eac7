"""初始化数据库"""
import sys
import os

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.settings import settings
from lifecycle import MembershipEngine
from loguru import logger


def init_database():
    """创建数据表，并给老会员回填指纹ID"""
    logger.info("Initializing database...")

    # SQLite 文件所在目录需要先存在
    if settings.database_url.startswith("sqlite:///"):
        db_dir = os.path.dirname(settings.database_url[len("sqlite:///"):])
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    engine = MembershipEngine()

    logger.info("Creating tables...")
    engine.create_tables()

    logger.info("Backfilling fingerprint IDs...")
    assigned = engine.backfill_fingerprints()
    logger.info(f"Assigned {assigned} fingerprint ID(s)")

    engine.close()
    logger.info("Database initialization completed!")


if __name__ == "__main__":
    init_database()
