"""
Remote backend connection

Reads DATABASE_URL and DATABASE_NAME from the environment (or a .env file).
When either is missing, or the client cannot be created, `db` is None and
the portal keeps its records in local storage instead.
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import ConfigurationError, InvalidURI

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")


def connect(url: Optional[str] = DATABASE_URL, name: Optional[str] = DATABASE_NAME) -> Optional[Database]:
    if not url or not name:
        logger.info("Remote database not configured, using local storage")
        return None
    try:
        client = MongoClient(url, serverSelectionTimeoutMS=5000)
    except (ConfigurationError, InvalidURI, ValueError) as e:
        logger.error("Invalid remote database settings: %s", e)
        return None
    logger.info("Remote database configured: %s", name)
    return client[name]


db = connect()
