# config.py
# Centralized configuration, read from the environment (.env supported).
import os
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "skill_swap")

SECRET_KEY = os.getenv("SECRET_KEY", "your_secret_key_here")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 7)))

# "lenient": one-sided right swipe + one-directional complementary skills is a match
# "mutual": the target must already have swiped right on the actor as well
MATCH_POLICY = os.getenv("MATCH_POLICY", "lenient")

CONVERSATION_LIMIT = int(os.getenv("CONVERSATION_LIMIT", "50"))
MATCH_WRITE_RETRIES = int(os.getenv("MATCH_WRITE_RETRIES", "3"))
DEFAULT_MEETING_DURATION = int(os.getenv("DEFAULT_MEETING_DURATION", "60"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

if SECRET_KEY == "your_secret_key_here":
    logger.warning("SECRET_KEY is still the development default. Set a secure value in your .env")
