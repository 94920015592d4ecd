import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./health_samples.db")
API_KEY: str = os.getenv("API_KEY", "")
TZ: str = os.getenv("TZ", "America/New_York")
REDIS_URL: str = os.getenv("REDIS_URL", "")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
