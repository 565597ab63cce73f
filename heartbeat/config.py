"""Configuration settings for the heartbeat client core."""

import os
from typing import Dict, List

# Remote API
API_BASE_URL = os.getenv("HEARTBEAT_API_URL", "http://localhost:8000")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("HEARTBEAT_REQUEST_TIMEOUT", "30"))

# Local storage
DATA_DIR = os.getenv("HEARTBEAT_DATA_DIR", "data")
STORE_FILE_NAME = "local_storage.json"

# Persisted storage keys (stable across sessions)
AUTHENTICATED_KEY = "hb_authenticated"
TOKEN_KEY = "hb_token"
USER_KEY = "hb_user"
DOSSIER_KEY = "heartbeat:dossier"
ACTIVITY_TAGS_KEY = "heartbeat:activity_tags"

# A successful validation is trusted for this long before hitting /api/auth/me again
VALIDATION_FRESHNESS_SECONDS = 5 * 60

# Measurement aggregation
SLOT_MINUTES = 30
NO_ACTIVITY_LABEL = "no activity assigned"
WEEKDAY_LABELS: List[str] = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

# Page sizes for /api/measurements/latest
DEFAULT_MEASUREMENT_LIMIT = 500  # overview and activity views
FEED_MEASUREMENT_LIMIT = 100  # live monitor polling

# Heart rate status thresholds (upper bounds, exclusive)
HEART_RATE_STATUS: Dict[str, int] = {
    "low": 60,
    "normal": 100,
    "elevated": 140,
}
