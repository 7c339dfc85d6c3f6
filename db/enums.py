from enum import StrEnum


# Enums
class TitleType(StrEnum):
    MOVIES = "movies"
    TVSHOWS = "tvshows"

    @property
    def tmdb_type(self) -> str:
        return "movie" if self is TitleType.MOVIES else "tv"


class ProviderType(StrEnum):
    XTREAM = "xtream"
    AGTV = "agtv"


class ProviderAction(StrEnum):
    ADDED = "added"
    ENABLED = "enabled"
    DISABLED = "disabled"
    DELETED = "deleted"
    CATEGORIES_CHANGED = "categories-changed"


class JobStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class IgnoredReason(StrEnum):
    AMBIGUOUS_MATCH = "ambiguous_match"
    NO_CANDIDATE = "no_candidate"
    EMPTY_NAME = "empty_name"
    MISSING_YEAR = "missing_year"
    UNKNOWN_TYPE = "unknown_type"
