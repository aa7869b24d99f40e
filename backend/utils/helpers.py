import re
import unicodedata


def safe_strip(value):
    """Safely strip a string value, handling None"""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def slugify(value, fallback='item'):
    """
    URL-safe slug: ASCII, lowercase, runs of anything else collapsed to '-'

    "Beyoncé & Friends" -> "beyonce-friends"
    """
    value = safe_strip(value)
    if not value:
        return fallback
    value = unicodedata.normalize('NFKD', value).encode('ascii', 'ignore').decode('ascii')
    value = re.sub(r'[^a-z0-9]+', '-', value.lower()).strip('-')
    return value or fallback


def parse_bool(value, default=False):
    """Interpret env/query-string style booleans ('1', 'true', 'yes', 'on')"""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')
