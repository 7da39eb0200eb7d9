from dotenv import load_dotenv
load_dotenv()
import os
import logging
from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie
from database.models.user import User
from database.models.course import Course
from database.models.api_usage import ApiUsage

MONGO_URI = os.environ["MONGO_INITDB_ROOT_URI"]
MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "learnpath")

DOCUMENT_MODELS = [User, Course, ApiUsage]

logger = logging.getLogger(__name__)


async def init_db():
    client = AsyncIOMotorClient(MONGO_URI)
    await init_beanie(database=client[MONGO_DB_NAME], document_models=DOCUMENT_MODELS)  # type: ignore
    info = await client.server_info()
    logger.info(f"Connected to MongoDB {info.get('version')}")
    return client
