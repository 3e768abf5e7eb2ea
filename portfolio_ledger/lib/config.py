"""Application configuration constants."""

from decimal import Decimal

# Market data provider discipline
MIN_REQUEST_INTERVAL = 0.5  # seconds between outbound provider calls, across all callers
RATE_LIMIT_MAX_ATTEMPTS = 3  # attempts per fetch when the provider rate-limits us
RATE_LIMIT_BACKOFF_SECONDS = 2  # backoff = 2s x attempt number
PROVIDER_REQUEST_TIMEOUT = 15  # seconds before a pending provider call is abandoned

# Cache lifetimes
QUOTE_CACHE_TTL = 3600  # seconds (1 hour)
FX_CACHE_TTL = 3600  # seconds (1 hour)

# FX
BASE_CURRENCY = "CAD"
FX_PAIR = "USDCAD"
DEFAULT_USD_CAD_RATE = Decimal("1.35")  # used when every FX source fails

# Replay
POSITION_EPSILON = Decimal("0.0001")  # quantities at or below this count as closed

# Equity curve
PERIOD_DAYS = {
    "15d": 15,
    "1m": 30,
    "3m": 90,
    "6m": 180,
    "1y": 365,
}
INCEPTION_PERIOD = "inception"
INCEPTION_FALLBACK_DAYS = 365  # start of an inception curve over an empty ledger
DAILY_BUCKET_DAYS = 1
WEEKLY_BUCKET_DAYS = 7
WEEKLY_BUCKET_PERIODS = ("6m", "1y")
INCEPTION_DAILY_MAX_SPAN_DAYS = 90

# Dividend frequency detection
# Mean gap (days) between consecutive payments, inclusive bounds.
ANNUAL_GAP_DAYS = (300, 400)
QUARTERLY_GAP_DAYS = (75, 120)
MONTHLY_GAP_DAYS = (20, 45)
MIN_PAYMENTS_FOR_FREQUENCY = 2

# Dividend projection
TRAILING_PROJECTION_MONTHS = 12
TYPICAL_MONTH_MIN_OCCURRENCES = 2
TYPICAL_MONTH_SPARSE_HISTORY = 5  # below this many payments a single occurrence counts

# Market-rate projection: payment months when the history cannot tell
DEFAULT_QUARTERLY_MONTHS = (3, 6, 9, 12)

# Confidence score (0-100)
CONFIDENCE_BASE = 50
CONFIDENCE_YEARS_BONUS = ((3, 35), (2, 25), (1, 10))  # (min distinct years, bonus)
CONFIDENCE_REGULAR_BONUS = 10
CONFIDENCE_MAX = 100
