"""全局配置管理

所有用户可配置项均通过 .env 文件设置，运行时自动加载到此处。

使用方式：
    1. 运行 python scripts/setup_env.py 生成 .env 文件
    2. 或手动创建 .env 文件（参考 .env.example）
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用配置 - 所有字段均可通过 .env 或环境变量覆盖"""

    # ========== 数据库 ==========
    database_url: str = "sqlite:///data/gym.db"

    # ========== 时间 ==========
    # 签到按此时区的自然日（零点到零点）去重
    timezone: str = "UTC"

    # ========== 指纹录入 ==========
    fingerprint_token_secret: str = "change-me-to-a-random-secret-key"
    fingerprint_token_ttl_minutes: int = 10
    fingerprint_device_key: str = ""  # 为空则不校验设备密钥
    require_fingerprint_enrollment: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# 全局配置实例
settings = Settings()
