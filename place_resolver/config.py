# place_resolver/config.py
from dotenv import load_dotenv
import os

load_dotenv()

# API Keys
ZYTE_API_KEY = os.getenv("ZYTE_API_KEY")

# Runtime parameters
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "5"))
CONCURRENCY = int(os.getenv("CONCURRENCY", "10"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")

# Retry policy
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", "3"))
RETRY_DELAY_MS = int(os.getenv("RETRY_DELAY_MS", "1000"))
STRATEGY_DELAY_MS = int(os.getenv("STRATEGY_DELAY_MS", "500"))
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "15"))

# URLs
ZYTE_URL = "https://api.zyte.com/v1/extract"
TEXT_SEARCH_URL = "https://search.naver.com/search.naver"
AGGREGATED_SEARCH_URL = "https://map.naver.com/p/api/search"
MAP_URL = "https://map.naver.com/p"
MAP_SEARCH_URL = "https://map.naver.com/p/search/{query}"
MAP_HOME_URL = "https://map.naver.com"
PLACE_URL_TEMPLATE = "https://m.place.naver.com/place/{place_id}/home"
REVIEW_URL_TEMPLATE = "https://m.place.naver.com/place/{place_id}/review"

# Identifying headers rotated per outbound request
USER_AGENTS = [
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

# Static per-step priors shown on the status dashboard (not measured)
SUCCESS_RATES = {
    "1": 0.85,  # text search scraping
    "2": 0.4,   # aggregated search API
    "3": 1.0,   # manual instructions
}

# Confidence assigned to a candidate by the strategy that produced it
TEXT_SEARCH_CONFIDENCE = 0.85
AGGREGATED_SEARCH_CONFIDENCE = 0.4
COORDINATE_CONFIDENCE = 0.5
SYNTHETIC_COORDINATE_CONFIDENCE = 0.1
MANUAL_CONFIDENCE = 1.0

MIN_PLACE_ID_LENGTH = 4
STATUS_VERSION = "3.0.0"

# File names
INPUT_CSV = "businesses.csv"
OUTPUT_CSV = "resolved_places.csv"
