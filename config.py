import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Application environment
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = ENVIRONMENT == "development"
TESTING = os.getenv("TESTING", "false").lower() == "true"

# Database settings
DATABASE_URL = os.getenv("DATABASE_URL")
AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "true").lower() == "true"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Application settings
APP_NAME = "Light of Life Realtime API"
APP_VERSION = "1.0.0"

# Auth settings (HS256 bearer tokens)
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TOKEN_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_MINUTES", "60"))

# Redis settings (rate limiting); empty means in-memory only
REDIS_URL = os.getenv("REDIS_URL", "")

# Message encryption at rest
MESSAGE_ENCRYPTION_KEY = os.getenv("MESSAGE_ENCRYPTION_KEY", "")
MESSAGE_SANITIZE_ENABLED = os.getenv("MESSAGE_SANITIZE_ENABLED", "true").lower() == "true"

# Presence Settings
PRESENCE_ENABLED = os.getenv("PRESENCE_ENABLED", "true").lower() == "true"
PRESENCE_ONLINE_WINDOW_SECONDS = int(os.getenv("PRESENCE_ONLINE_WINDOW_SECONDS", "300"))

# Typing indicator
TYPING_TIMEOUT_SECONDS = float(os.getenv("TYPING_TIMEOUT_SECONDS", "3"))

# Calls
CALLS_ENABLED = os.getenv("CALLS_ENABLED", "true").lower() == "true"
CALL_RING_TIMEOUT_SECONDS = int(os.getenv("CALL_RING_TIMEOUT_SECONDS", "60"))

# Pusher Settings
PUSHER_ENABLED = os.getenv("PUSHER_ENABLED", "true").lower() == "true"
PUSHER_APP_ID = os.getenv("PUSHER_APP_ID", "")
PUSHER_KEY = os.getenv("PUSHER_KEY", "")
PUSHER_SECRET = os.getenv("PUSHER_SECRET", "")
PUSHER_CLUSTER = os.getenv("PUSHER_CLUSTER", "us2")
PUSHER_PUBLISH_WORKERS = int(os.getenv("PUSHER_PUBLISH_WORKERS", "5"))

# Private Chat Settings
PRIVATE_CHAT_ENABLED = os.getenv("PRIVATE_CHAT_ENABLED", "true").lower() == "true"
PRIVATE_CHAT_MAX_MESSAGES_PER_MINUTE = int(os.getenv("PRIVATE_CHAT_MAX_MESSAGES_PER_MINUTE", "15"))
PRIVATE_CHAT_MAX_MESSAGE_LENGTH = int(os.getenv("PRIVATE_CHAT_MAX_MESSAGE_LENGTH", "2000"))
PRIVATE_CHAT_HISTORY_LIMIT = int(os.getenv("PRIVATE_CHAT_HISTORY_LIMIT", "50"))

# Groups Settings
GROUPS_ENABLED = os.getenv("GROUPS_ENABLED", "true").lower() == "true"
GROUP_MESSAGE_RATE_PER_USER_PER_MIN = int(os.getenv("GROUP_MESSAGE_RATE_PER_USER_PER_MIN", "40"))
GROUP_MESSAGE_MAX_LENGTH = int(os.getenv("GROUP_MESSAGE_MAX_LENGTH", "2000"))
