"""Centralized constants for Napoleon AI."""

# Normalization
DEFAULT_SUBJECT = "No Subject"
MAX_CONTENT_LENGTH = 8000
UNKNOWN_SENDER = "Unknown Sender"
TEMP_ID_PREFIX = "temp_"

# Orchestrator
MAX_TRACKED_STATES = 1024

# Summaries
FALLBACK_SUMMARY = "No summary available"

# Priority
URGENT_THRESHOLD = 80
HIGH_PRIORITY_THRESHOLD = 70
MAX_VIP_LEVEL = 10

# Events
MESSAGE_PROCESSED_TOPIC = "message_processed"

# Digest
DIGEST_WINDOW_HOURS = 24
DIGEST_TOP_MESSAGES = 5
