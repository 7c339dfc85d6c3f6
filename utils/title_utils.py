import logging
import re

logger = logging.getLogger(__name__)

YEAR_IN_TITLE_PATTERN = re.compile(r"\((\d{4})(?:-\d{4})?\)")
YEAR_SUFFIX_PATTERN = re.compile(r"\s*\(\d{4}(?:-\d{4})?\)\s*$")
INVALID_YEAR_PATTERN = re.compile(r"\s*\(\d{0,3}\)")
EPISODE_SUFFIX_PATTERN = re.compile(r"(?:\s+S\d+\s*E\d+)+\s*$", re.IGNORECASE)
RELEASE_YEAR_PATTERN = re.compile(r"^(\d{4})")
SLUG_INVALID_PATTERN = re.compile(r"[^a-z0-9]+")
WHITESPACE_PATTERN = re.compile(r"\s+")
RELEASE_DATE_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})")


def extract_year_from_title(title: str) -> str | None:
    match = YEAR_IN_TITLE_PATTERN.search(title or "")
    return match.group(1) if match else None


def extract_year_from_release_date(release_date: str | None) -> str | None:
    match = RELEASE_YEAR_PATTERN.match(release_date or "")
    return match.group(1) if match else None


def parse_year(value) -> int | None:
    """Parse a year, rejecting noise like "0" or an empty string."""
    if value is None:
        return None
    match = RELEASE_YEAR_PATTERN.match(str(value).strip())
    if not match:
        return None
    year = int(match.group(1))
    return year if year >= 1800 else None


def normalize_title(name: str) -> tuple[str, str | None]:
    """
    Normalize a raw provider title for matching.

    Returns:
        The normalized name and the year found in its suffix, if any.
    """
    name = (name or "").strip()
    year = None
    # Suffixes may be stacked, e.g. "Show (2019) S01 E02"
    while True:
        previous = name
        name = EPISODE_SUFFIX_PATTERN.sub("", name).strip()
        suffix_year = extract_year_from_title(name) if YEAR_SUFFIX_PATTERN.search(name) else None
        if suffix_year:
            year = year or suffix_year
        name = YEAR_SUFFIX_PATTERN.sub("", name).strip()
        name = INVALID_YEAR_PATTERN.sub("", name).strip()
        if name == previous:
            break
    name = WHITESPACE_PATTERN.sub(" ", name.lower()).strip()
    return name, year


def apply_cleanup(title: str, cleanup: dict[str, str]) -> str:
    """Run the provider's regex replacement pipeline over a raw title."""
    for pattern, replacement in (cleanup or {}).items():
        try:
            title = re.sub(pattern, replacement, title)
        except re.error as e:
            logger.warning(f"Invalid cleanup pattern '{pattern}': {e}")
    return title.strip()


def slugify(value: str) -> str:
    return SLUG_INVALID_PATTERN.sub("-", (value or "").lower()).strip("-")


def normalize_release_date(value) -> str | None:
    """Return the YYYY-MM-DD prefix of an upstream date, if it has one."""
    match = RELEASE_DATE_PATTERN.match(str(value or "").strip())
    return match.group(1) if match else None
