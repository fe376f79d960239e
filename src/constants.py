"""Constants used in business logic."""

from datetime import timedelta

# Default token ceilings
DEFAULT_TOKEN_LIMIT_PER_REQUEST = 4000
DEFAULT_TOKEN_LIMIT_PER_SESSION = 50000
DEFAULT_TOKEN_LIMIT_PER_DAY = 100000
DEFAULT_TOKEN_LIMIT_PER_MONTH = 1000000

# Default OCR ceilings
DEFAULT_OCR_MAX_FILE_SIZE_MB = 5
DEFAULT_OCR_MAX_PAGES_PER_DOCUMENT = 10
DEFAULT_OCR_MAX_DOCUMENTS_PER_SESSION = 5
DEFAULT_OCR_MAX_PAGES_PER_SESSION = 30
DEFAULT_OCR_MAX_PAGES_PER_DAY = 50
DEFAULT_OCR_MAX_DOCUMENTS_PER_DAY = 20
DEFAULT_OCR_MAX_CONCURRENT_JOBS = 3
DEFAULT_OCR_PROCESSING_TIMEOUT = 120

# Supported OCR content types
SUPPORTED_IMAGE_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/tiff",
    "image/webp",
    "image/bmp",
)
SUPPORTED_DOCUMENT_TYPES = (
    "application/pdf",
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/tiff",
)
PDF_CONTENT_TYPE = "application/pdf"

# Rough size of one PDF page, used when the real page count is not known yet
PDF_BYTES_PER_PAGE_ESTIMATE = 100000

BYTES_PER_MEGABYTE = 1024 * 1024

# Retention of in-memory state
SESSION_TTL = timedelta(hours=24)
JOB_RETENTION = timedelta(hours=1)
RATE_HISTORY_RETENTION = timedelta(hours=24)

# Rate limiter windows
ONE_MINUTE = timedelta(minutes=1)
ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)

# Hit log
DEFAULT_HIT_LOG_CAPACITY = 1000
HIT_LOG_STATS_RECENT = 50
HIT_LOG_DEFAULT_QUERY_SIZE = 50
HIT_LOG_DEFAULT_CALLER_QUERY_SIZE = 20
HIT_LOG_APPROACHING_WINDOW = 100
HIT_LOG_APPROACHING_THRESHOLD = 80

# Background cleanup period in seconds
DEFAULT_QUOTA_SCHEDULER_PERIOD = 3600

# Token estimation used before a chat completion is made
CHARACTERS_PER_TOKEN = 4
TOKENS_PER_MESSAGE_OVERHEAD = 4
SYSTEM_PROMPT_TOKEN_ALLOWANCE = 500
RESPONSE_TOKEN_BUFFER = 1000

# Caller identification
ANONYMOUS_CALLER_ID = "anonymous"
USER_CALLER_PREFIX = "user:"
CUSTOM_CALLER_PREFIX = "custom:"
IP_CALLER_PREFIX = "ip:"

HEADER_AUTH_USER_ID = "x-auth-user-id"
HEADER_USER_ID = "x-user-id"
HEADER_FORWARDED_FOR = "x-forwarded-for"
HEADER_REAL_IP = "x-real-ip"
HEADER_SESSION_ID = "x-session-id"
HEADER_ADMIN_KEY = "x-admin-key"
HEADER_OCR_BYPASS_KEY = "x-ocr-bypass-key"
HEADER_USER_PREMIUM = "x-user-premium"
COOKIE_SESSION_ID = "session-id"
QUERY_ADMIN_KEY = "admin_key"

# Response headers describing a denial
HEADER_RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"
HEADER_RETRY_AFTER = "Retry-After"

# Retry-After fallbacks when a denial carries no reset instant
DEFAULT_QUOTA_RETRY_AFTER = 3600
DEFAULT_RATE_RETRY_AFTER = 60

# Environment variable holding the path to configuration file
CONFIGURATION_PATH_ENV_VAR = "USAGE_GATE_CONFIG_PATH"
DEFAULT_CONFIGURATION_FILE = "usage-gate.yaml"
