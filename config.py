import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration, read from the environment"""

    SECRET_KEY = os.environ.get("SECRET_KEY") or os.urandom(24)

    # MongoDB
    MONGO_URI = os.environ.get("MONGO_URI", "mongodb://localhost:27017/")
    MONGO_DB = os.environ.get("MONGO_DB", "survey_market")
    MONGO_TIMEOUT_MS = int(os.environ.get("MONGO_TIMEOUT_MS", 5000))
    # Largest user record we are willing to write (bytes of BSON)
    MAX_RECORD_BYTES = int(os.environ.get("MAX_RECORD_BYTES", 5 * 1024 * 1024))

    # Gemini
    GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
    GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash")
    GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    # Provider timeouts, seconds
    OTP_TIMEOUT = float(os.environ.get("OTP_TIMEOUT", 5))
    MESSAGE_TIMEOUT = float(os.environ.get("MESSAGE_TIMEOUT", 4))
    SURVEY_TIMEOUT = float(os.environ.get("SURVEY_TIMEOUT", 10))

    # Simulated latency, seconds
    SUBMIT_DELAY = float(os.environ.get("SUBMIT_DELAY", 1.5))
    PAYMENT_DELAY = float(os.environ.get("PAYMENT_DELAY", 2))

    GLOBAL_DAILY_CAP = int(os.environ.get("GLOBAL_DAILY_CAP", 100000))

    # Base of the referral links handed out on the invite page
    PUBLIC_URL = os.environ.get("PUBLIC_URL", "https://globalsurveys.co.ke/")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "testing-secret"
    MONGO_DB = "survey_market_test"
    GEMINI_API_KEY = ""
    SUBMIT_DELAY = 0
    PAYMENT_DELAY = 0
    MAX_RECORD_BYTES = 64 * 1024
