import re

UA_HEADER = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
}

# Persistent store collections
IPTV_PROVIDERS_COLLECTION = "iptv_providers"
TITLES_COLLECTION = "titles"
TITLES_STREAMS_COLLECTION = "titles-streams"
STATS_COLLECTION = "stats"
SETTINGS_COLLECTION = "settings"
USERS_COLLECTION = "users"
JOBS_HISTORY_COLLECTION = "jobs_history"

# Per-provider collection suffixes: "{provider_id}.categories", "{provider_id}.titles"
PROVIDER_CATEGORIES_SUFFIX = "categories"
PROVIDER_TITLES_SUFFIX = "titles"

# Stream slots
MOVIE_STREAM_SLOT = "main"
EPISODE_SLOT_PATTERN = re.compile(r"^S\d{2}-E\d{2}$")

# Duration strings such as "30s", "15m", "6h", "1d"
INTERVAL_PATTERN = re.compile(r"^(\d+)([smhd])$")
INTERVAL_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}

# Cache TTLs in seconds; NEVER_EXPIRE keeps the entry until explicitly removed
NEVER_EXPIRE = -1
CATEGORIES_CACHE_TTL = 3600
TITLES_CACHE_TTL = 3600
MOVIE_EXTENDED_CACHE_TTL = NEVER_EXPIRE
TVSHOW_EXTENDED_CACHE_TTL = 6 * 3600
TMDB_SEARCH_CACHE_TTL = 24 * 3600
TMDB_DETAILS_CACHE_TTL = NEVER_EXPIRE
TMDB_SEASON_CACHE_TTL = 6 * 3600
TMDB_SIMILAR_CACHE_TTL = NEVER_EXPIRE

# AGTV serves TV shows in pages of this size; a shorter page is the last one
AGTV_PAGE_SIZE = 5000

# Attributes carried on generated M3U entries
M3U_PARAMETERS = ("tvg-id", "tvg-name", "tvg-logo", "group-title")

TMDB_PROVIDER_ID = "tmdb"
TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
