import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

if REDIS_PASSWORD:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://:{REDIS_PASSWORD}@{REDIS_HOST}:{REDIS_PORT}")
else:
    REDIS_URL = os.getenv("REDIS_URL", f"redis://{REDIS_HOST}:{REDIS_PORT}")

# "redis" for multi-process deployments, "memory"/"local" for single process and tests
STORE_BACKEND = os.getenv("STORE_BACKEND", "redis")
RELAY_BACKEND = os.getenv("RELAY_BACKEND", "redis")

JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 10000))
COMPRESSION_THRESHOLD = int(os.getenv("COMPRESSION_THRESHOLD", 1000))
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 10 * 1024 * 1024))

# "open" or "existing_thread"
PRIVATE_JOIN_POLICY = os.getenv("PRIVATE_JOIN_POLICY", "open")

RELAY_RECONNECT_MIN_DELAY = float(os.getenv("RELAY_RECONNECT_MIN_DELAY", 0.5))
RELAY_RECONNECT_MAX_DELAY = float(os.getenv("RELAY_RECONNECT_MAX_DELAY", 30))

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

REACTION_TYPES = ("like", "love", "laugh", "sad", "angry")
FILE_TYPES = ("image", "video", "audio", "document", "other")
