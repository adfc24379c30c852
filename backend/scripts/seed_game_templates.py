from __future__ import annotations

import argparse
import os
import sys

# Force /app into path for Docker compatibility
sys.path.append("/app")
# Also add current directory as fallback
sys.path.append(os.getcwd())

from sqlalchemy import select

from app.core.config import settings
from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models.user import User, UserRole
from app.services.game_templates import ensure_game_template
from app.services.storage import ensure_bucket_exists


def ensure_user(db, *, name: str, role: UserRole) -> User:
    user = db.scalar(select(User).where(User.name == name))
    if user is None:
        user = User(name=name, role=role)
        db.add(user)
        db.flush()
    return user


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed game templates (and optionally a super admin) for the quiz API")
    parser.add_argument("--slug", default=settings.quiz_template_slug)
    parser.add_argument("--name", default="Quiz")
    parser.add_argument("--create-tables", action="store_true", help="create missing tables before seeding")
    parser.add_argument("--ensure-bucket", action="store_true", help="create the S3 bucket if missing (non-production)")
    parser.add_argument(
        "--super-admin-name",
        default=os.environ.get("GAMES_SEED_SUPER_ADMIN_NAME", ""),
        help="also ensure a SUPER_ADMIN user and print a dev token",
    )
    args = parser.parse_args()

    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    if args.ensure_bucket:
        ensure_bucket_exists()

    with SessionLocal() as db:
        tpl = ensure_game_template(db, slug=args.slug, name=args.name, description="Multiple-choice quiz")
        admin = None
        if args.super_admin_name:
            admin = ensure_user(db, name=args.super_admin_name, role=UserRole.super_admin)
        db.commit()

        print(f"template: {tpl.slug} -> {tpl.id}")
        if admin is not None:
            print(f"super admin: {admin.name} -> {admin.id}")
            if (settings.app_env or "").strip().lower() not in {"prod", "production"}:
                print(f"dev token: {create_access_token(user_id=admin.id)}")


if __name__ == "__main__":
    main()
