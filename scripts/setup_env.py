#!/usr/bin/env python3
"""交互式生成 .env 配置文件

使用方式：
    python scripts/setup_env.py

会引导用户填写必要的配置项，生成 .env 文件。
"""
import os
import secrets

# 项目根目录
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
ENV_FILE = os.path.join(PROJECT_ROOT, ".env")


# 配置项定义：(env_key, 描述, 默认值, 是否必填)
CONFIG_ITEMS = [
    # === 数据库 ===
    ("DATABASE_URL", "数据库连接地址", "sqlite:///data/gym.db", False),

    # === 时间 ===
    ("TIMEZONE", "签到自然日所用时区（如 Asia/Kolkata）", "UTC", False),

    # === 指纹录入 ===
    ("FINGERPRINT_TOKEN_SECRET", "录入凭证签名密钥（默认随机生成）", secrets.token_hex(32), True),
    ("FINGERPRINT_TOKEN_TTL_MINUTES", "录入凭证有效期（分钟）", "10", False),
    ("FINGERPRINT_DEVICE_KEY", "指纹设备密钥（留空则不校验）", "", False),
    ("REQUIRE_FINGERPRINT_ENROLLMENT", "注册时是否必须录入指纹", "true", False),
]

SECTION_NAMES = {
    "DATABASE": "# === 数据库配置 ===",
    "TIMEZONE": "# === 时间配置 ===",
    "FINGERPRINT": "# === 指纹录入配置 ===",
    "REQUIRE": "# === 指纹录入配置 ===",
}


def main():
    print()
    print("=" * 60)
    print("  Gym Membership 配置向导")
    print("  生成 .env 配置文件")
    print("=" * 60)
    print()

    # 检查是否已存在 .env
    if os.path.exists(ENV_FILE):
        print(f"⚠️  检测到已有 .env 文件: {ENV_FILE}")
        choice = input("是否覆盖？(y/N): ").strip().lower()
        if choice != "y":
            print("已取消。")
            return
        print()

    env_lines = [
        "# Gym Membership 配置文件",
        "# 由 scripts/setup_env.py 自动生成",
    ]

    for key, desc, default, required in CONFIG_ITEMS:
        header = SECTION_NAMES.get(key.split("_")[0], "# === 其他配置 ===")
        # 避免重复写同一个 section header
        if header not in env_lines:
            env_lines.append("")
            env_lines.append(header)

        req_tag = " [必填]" if required else ""
        default_hint = f" (默认: {default})" if default else ""
        print(f"📝 {desc}{req_tag}")

        while True:
            value = input(f"  {key}={default_hint}: ").strip()
            if not value:
                value = default
            if required and not value:
                print(f"  ❌ {key} 是必填项，请输入值。")
                continue
            break

        env_lines.append(f"{key}={value}")
        print()

    # 写入文件
    env_content = "\n".join(env_lines) + "\n"

    with open(ENV_FILE, "w", encoding="utf-8") as f:
        f.write(env_content)

    print("=" * 60)
    print(f"  ✅ 配置文件已生成: {ENV_FILE}")
    print()
    print("  初始化数据库：")
    print("    python scripts/init_db.py")
    print("=" * 60)


if __name__ == "__main__":
    main()
