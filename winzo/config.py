import logging
import os

# Security setup
JWT_SECRET = os.getenv("JWT_SECRET", "winzo-secret-key")
JWT_ALG = "HS256"
TOKEN_EXPIRE_DAYS = int(os.getenv("TOKEN_EXPIRE_DAYS", "7"))

# Coins
BID_COST = int(os.getenv("BID_COST", "30"))
SIGNUP_BONUS_COINS = int(os.getenv("SIGNUP_BONUS_COINS", "1000"))
STRICT_VERIFICATION = os.getenv("STRICT_VERIFICATION", "true").lower() == "true"

# Storage
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").lower()
STORAGE_PATH = os.getenv("STORAGE_PATH", "winzo_store.json")
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "winzo")

DEFAULT_VODAFONE_NUMBERS = [
    n.strip()
    for n in os.getenv("DEFAULT_VODAFONE_NUMBERS", "01111111111,01222222222").split(",")
    if n.strip()
]

DEV_MODE = os.getenv("DEV_MODE", "true").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(format=LOG_FORMAT, level=level)
