from dotenv import load_dotenv
load_dotenv()
import asyncio
import os
import logging
from database.connection.db import init_db
from database.models.user import Role, User
from utils.auth import hash_password

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@admin.com"
DEFAULT_ADMIN_USERNAME = "admin"


async def create_admin(email: str, username: str, password: str) -> User:
    """Create the admin account unless one already exists; return the admin."""
    existing_admin = await User.find_one(User.role == Role.ADMIN)
    if existing_admin:
        logger.info(f"Admin user already exists: {existing_admin.email}")
        return existing_admin

    admin = User(
        email=email.strip().lower(),
        username=username.strip(),
        password=hash_password(password),
        role=Role.ADMIN,
    )
    await admin.insert()
    logger.info(f"Created admin user: {admin.email}")
    return admin


async def main():
    try:
        password = os.environ["ADMIN_PASSWORD"]
    except KeyError:
        raise RuntimeError("Missing required environment variable: 'ADMIN_PASSWORD'")

    client = await init_db()
    try:
        await create_admin(
            email=os.environ.get("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL),
            username=os.environ.get("ADMIN_USERNAME", DEFAULT_ADMIN_USERNAME),
            password=password,
        )
    finally:
        client.close()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    asyncio.run(main())
