#!/usr/bin/env python
"""
运维脚本：把用户积分余额重置为其套餐额度（free / pro）。

每个被修改的账户都会追加一条 period_reset 流水，并刷新周期起点。

示例：
  python backend/scripts/top_up_users.py
  python backend/scripts/top_up_users.py --email someone@example.com
  python backend/scripts/top_up_users.py --dry-run
"""

from __future__ import annotations

import argparse
import datetime as dt
import sys
from pathlib import Path

# 确保可从仓库根或 backend 目录运行
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sqlalchemy.exc import SQLAlchemyError  # noqa: E402

from app.db.session import SessionLocal  # noqa: E402
from app.models import REASON_PERIOD_RESET, CreditTransaction  # noqa: E402
from app.repositories.user_repository import get_user_by_email, list_users  # noqa: E402
from app.services.credit_ledger import PLAN_FREE, PLAN_PRO, plan_allowance  # noqa: E402
from app.settings import settings  # noqa: E402


def top_up(email: str | None, dry_run: bool) -> int:
    db = SessionLocal()
    try:
        if email:
            user = get_user_by_email(db, email=email)
            if user is None:
                print(f"未找到用户: {email}")
                return 1
            users = [user]
        else:
            users = list_users(db)

        print(f"共 {len(users)} 个用户，开始重置余额...")
        now = dt.datetime.now(dt.UTC)
        for user in users:
            plan = user.plan or PLAN_FREE
            if plan not in (PLAN_FREE, PLAN_PRO):
                print(f"用户 {user.email} 的套餐 '{plan}' 未知，按免费档处理")
            target = plan_allowance(plan, settings)
            current = user.credit_balance
            print(f"{user.email} | plan={plan} | balance={current} -> {target}")
            if dry_run:
                continue

            user.plan = plan
            user.credit_balance = target
            user.credit_usage_this_period = 0
            if user.credit_usage_total is None:
                user.credit_usage_total = 0
            user.last_credit_reset = now
            user.plan_renew_at = now + dt.timedelta(days=settings.credit_reset_interval_days)
            db.add(user)
            db.add(
                CreditTransaction(
                    user_id=user.id,
                    amount=target - int(current or 0),
                    reason=REASON_PERIOD_RESET,
                    description="manual top-up",
                    balance_after=target,
                )
            )

        if not dry_run:
            db.commit()
        print("完成。" if not dry_run else "dry-run 完成，未写入任何数据。")
        return 0
    except SQLAlchemyError as exc:
        db.rollback()
        print(f"重置失败: {exc}")
        return 1
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="将用户积分余额重置为套餐额度")
    parser.add_argument("--email", help="只处理指定邮箱的用户；不提供则处理全部用户")
    parser.add_argument("--dry-run", action="store_true", help="只打印将要执行的修改")
    args = parser.parse_args()
    return top_up(args.email, args.dry_run)


if __name__ == "__main__":
    sys.exit(main())
