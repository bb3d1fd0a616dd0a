import os
from dotenv import load_dotenv

load_dotenv()

# --- JWT Configuration ---
JWT_SECRET = os.getenv("JWT_SECRET", "change-this-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "720"))  # 30 days

# --- Database ---
# Default to local SQLite, but prefer environment variable (for hosted Postgres)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/streaks.db")

# Fix for common SQLAlchemy issues with postgres:// vs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Streak engine ---
DEFAULT_GRADUAL_THRESHOLD = int(os.getenv("DEFAULT_GRADUAL_THRESHOLD", "80"))
FREQUENCY_LOOKBACK_PERIODS = int(os.getenv("FREQUENCY_LOOKBACK_PERIODS", "52"))
STREAK_MILESTONES = [
    int(m) for m in os.getenv("STREAK_MILESTONES", "7,14,21,30,60,90,100,365").split(",") if m.strip()
]

# --- Transactions ---
TRANSACTION_RETRY_ATTEMPTS = int(os.getenv("TRANSACTION_RETRY_ATTEMPTS", "3"))
TRANSACTION_RETRY_BACKOFF_SECONDS = float(os.getenv("TRANSACTION_RETRY_BACKOFF_SECONDS", "0.05"))
