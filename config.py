"""
Pocket Prospector configuration: API keys and data source limits.

Every value is read from the environment once at import time.
"""
import os

from dotenv import load_dotenv

load_dotenv()

# Storage
DB_PATH = os.getenv('PROSPECTOR_DB_PATH', 'prospector.db')
DATABASE_URL = os.getenv('DATABASE_URL', '')  # postgres://... switches off SQLite

# Flask session signing + admin endpoint secret
SECRET_KEY = os.getenv('SECRET_KEY', 'pocket-prospector-dev')
ADMIN_KEY = os.getenv('ADMIN_KEY', '')

# Google (Geocoding, Places, Directions)
GOOGLE_API_KEY = os.getenv('GOOGLE_API_KEY') or os.getenv('GOOGLE_PLACES_API_KEY', '')
GOOGLE_GEOCODE_URL = 'https://maps.googleapis.com/maps/api/geocode/json'
GOOGLE_DIRECTIONS_URL = 'https://maps.googleapis.com/maps/api/directions/json'
GOOGLE_PLACES_SEARCH_URL = 'https://places.googleapis.com/v1/places:searchText'

# Google Sheets (personal metrics)
GOOGLE_SHEETS_API_KEY = os.getenv('GOOGLE_SHEETS_API_KEY', '')
GOOGLE_SHEETS_ID = os.getenv('GOOGLE_SHEETS_ID', '')
SHEETS_RANGE = os.getenv('SHEETS_RANGE', 'App Export!A1:Z1000')
SHEETS_URL = 'https://sheets.googleapis.com/v4/spreadsheets'

# Business intel (LLM)
GEMINI_API_KEY = os.getenv('GEMINI_API_KEY', '')
GEMINI_MODEL = os.getenv('GEMINI_MODEL', 'gemini-2.5-flash')
GEMINI_URL = 'https://generativelanguage.googleapis.com/v1beta/models'
ANTHROPIC_API_KEY = os.getenv('ANTHROPIC_API_KEY', '')
CLAUDE_MODEL = os.getenv('CLAUDE_MODEL', 'claude-sonnet-4-20250514')
INTEL_MAX_RETRIES = int(os.getenv('INTEL_MAX_RETRIES', '4'))
INTEL_INITIAL_DELAY = float(os.getenv('INTEL_INITIAL_DELAY', '0.8'))
INTEL_MAX_DELAY = float(os.getenv('INTEL_MAX_DELAY', '8'))

# Texas Comptroller mixed beverage gross receipts (Socrata)
SOCRATA_URL = os.getenv('SOCRATA_URL', 'https://data.texas.gov/resource/naix-2893.json')
SOCRATA_APP_TOKEN = os.getenv('SOCRATA_APP_TOKEN', '')
DATE_FIELD = 'obligation_end_date_yyyymmdd'
TOTAL_FIELD = 'total_receipts'
SEARCH_LIMIT = 100
TOP_LIMIT = 50
HISTORY_MONTHS = 12
SOCRATA_CACHE_TTL_HOURS = int(os.getenv('SOCRATA_CACHE_TTL_HOURS', '24'))

# OpenStreetMap Nominatim (fallback geocoder; policy is max 1 request/second)
NOMINATIM_URL = os.getenv('NOMINATIM_URL', 'https://nominatim.openstreetmap.org')
NOMINATIM_USER_AGENT = os.getenv('NOMINATIM_USER_AGENT', 'pocket-prospector/1.0')
NOMINATIM_MIN_DELAY_SECONDS = float(os.getenv('NOMINATIM_MIN_DELAY_SECONDS', '1.0'))
NOMINATIM_BACKOFF_SECONDS = float(os.getenv('NOMINATIM_BACKOFF_SECONDS', '30'))

# Texas bounding box, used to bias place searches
TEXAS_BOUNDS = {
    'low': {'latitude': 25.8371, 'longitude': -106.6456},
    'high': {'latitude': 36.5007, 'longitude': -93.5083},
}

# Directions API optimizes at most 23 intermediate waypoints on standard plans
MAX_WAYPOINTS = 23

# Stability guardrails
HTTP_TIMEOUT = float(os.getenv('HTTP_TIMEOUT', '20'))
MAX_MERGE_ATTEMPTS = 3
