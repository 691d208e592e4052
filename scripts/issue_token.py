#!/usr/bin/env python
"""
为指定用户签发一个访问令牌（JWT），方便本地调试聊天接口。

用法示例：
    python scripts/issue_token.py someone@example.com
    python scripts/issue_token.py someone@example.com --expires-in 3600
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.db.session import SessionLocal  # noqa: E402
from app.jwt_auth import create_access_token  # noqa: E402
from app.repositories.user_repository import get_user_by_email  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="为用户签发 JWT，用于 Authorization 头。",
    )
    parser.add_argument(
        "email",
        nargs="?",
        help="用户邮箱",
    )
    parser.add_argument(
        "--expires-in",
        type=int,
        default=86400,
        help="有效期（秒），默认 86400",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    email = args.email
    if not email:
        email = input("请输入用户邮箱: ").strip()
    if not email:
        print("邮箱不能为空", file=sys.stderr)
        sys.exit(1)

    with SessionLocal() as db:
        user = get_user_by_email(db, email=email)
        if user is None:
            print(f"未找到用户: {email}", file=sys.stderr)
            sys.exit(1)
        user_id = str(user.id)

    try:
        token = create_access_token(user_id, expires_in_seconds=args.expires_in)
    except RuntimeError as exc:
        print(f"签发失败: {exc}", file=sys.stderr)
        sys.exit(1)

    print("=== 签发结果 ===")
    print(f"用户: {email} ({user_id})")
    print("\n在请求头中使用：")
    print(f"Authorization: Bearer {token}")


if __name__ == "__main__":
    main()
