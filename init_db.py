# init_db.py
import argparse
import asyncio

from clinic.core.security import hash_password
from clinic.db.sql import AsyncSessionLocal, engine, init_db
from clinic.modules.users import repository as users_repo
from clinic.modules.users.models import UserRole


async def create_admin(email: str, password: str) -> None:
    async with AsyncSessionLocal() as session:
        if await users_repo.get_by_email(session, email.lower()):
            print(f"Admin {email} already exists, skipping")
            return
        await users_repo.create_user(
            session,
            email=email.lower(),
            password_hash=hash_password(password),
            first_name="Clinic",
            last_name="Admin",
            phone=None,
            role=UserRole.ADMIN.value,
        )
        await session.commit()
    print(f"Admin {email} created")


async def main(args: argparse.Namespace) -> None:
    await init_db(drop=args.drop)
    print("Database schema recreated successfully!" if args.drop else "Database schema ready")
    if args.admin_email:
        await create_admin(args.admin_email, args.admin_password)
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the clinic database schema")
    parser.add_argument("--drop", action="store_true", help="Drop all tables first")
    parser.add_argument("--admin-email", help="Bootstrap an admin account with this email")
    parser.add_argument("--admin-password", default="Admin12345", help="Password for the admin account")
    asyncio.run(main(parser.parse_args()))
