# library_app/db/database.py
import logging
import motor.motor_asyncio
from beanie import init_beanie

from library_app.core.config import MONGODB_URL, DATABASE_NAME
from library_app.models.book import Book
from library_app.models.member import Member
from library_app.models.loan import Loan
from library_app.models.counter import SequenceCounter

logger = logging.getLogger(__name__)

DOCUMENT_MODELS = [Book, Member, Loan, SequenceCounter]


async def init_db(client=None):
    """Connect to MongoDB and initialise Beanie. Returns the client."""
    if client is None:
        logger.info("Connecting to MongoDB...")
        client = motor.motor_asyncio.AsyncIOMotorClient(MONGODB_URL, uuidRepresentation="standard")

    database = client[DATABASE_NAME]
    logger.info(f"Using database: {DATABASE_NAME}")

    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    logger.info("Beanie initialization complete for all models.")
    return client
