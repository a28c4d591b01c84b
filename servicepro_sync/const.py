
VERSION = "0.1.0"

# Identifier field every optimistic record must carry
RECORD_ID_FIELD = "id"

# Durable queue
LOCATION_QUEUE_KEY = "location_queue"
LOCATION_ENTRY_TYPE = "LOCATION_ENTRY"
EVENT_CHECK_IN = "check_in"
EVENT_CHECK_OUT = "check_out"
LOCATION_EVENTS = (EVENT_CHECK_IN, EVENT_CHECK_OUT)
CAS_ATTEMPTS = 5             # compare-and-swap retries before giving up on a contended log

# Retry policy for undelivered queue entries (seconds)
RETRY_BASE_DELAY = 30        # first retry waits this long, doubling afterwards
RETRY_MAX_DELAY = 3600       # backoff never grows past one hour
SYNC_INTERVAL = 60           # default period of the background flush task

# Geometry
EARTH_RADIUS_M = 6371e3
DEFAULT_MAX_DISTANCE = 500   # metres between technician and job site

# Accuracy (metres) → quality tier; upper bounds are inclusive
LOCATION_QUALITY_TIERS: tuple[tuple[float, str], ...] = (
    (10, "excellent"),
    (25, "good"),
    (50, "fair"),
)
LOCATION_QUALITY_POOR = "poor"

# Positioning defaults for job check-ins
DEFAULT_ACCURACY = 50        # metres
DEFAULT_TIMEOUT = 10.0       # seconds
DEFAULT_MAXIMUM_AGE = 60.0   # seconds a cached fix stays acceptable

# Remote REST surface
REST_PATH = "/rest/v1/"
REQUEST_TIMEOUT = 5          # seconds, multiplied by attempt number for each retry
REQUEST_ATTEMPTS = 3
TABLE_JOB_VISITS = "job_visits"
TABLE_TIMESHEETS = "timesheets"

# Local storage
DEFAULT_STORAGE_DIR = ".servicepro"
