"""
Application configuration read from environment variables (.env supported).
"""

import os
from typing import Final, Optional

from dotenv import load_dotenv

load_dotenv()


class Config:
    MONGODB_URI: Final[Optional[str]] = os.getenv("MONGODB_URI") or os.getenv("MONGO_URL")
    DATABASE_NAME: Final[str] = os.getenv("DATABASE_NAME", "finance-tracker-app")
    LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")
    HOST: Final[str] = os.getenv("HOST", "0.0.0.0")
    PORT: Final[int] = int(os.getenv("PORT", "5000"))

    @classmethod
    def use_mongo(cls) -> bool:
        return bool(cls.MONGODB_URI)
