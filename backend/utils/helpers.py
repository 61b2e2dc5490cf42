# utils/helpers.py
def safe_strip(value):
    """Safely strip a string value, handling None"""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def optional_int(value):
    """Coerce request values like '1810', 1810 or '' into int or None"""
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValueError(f"Expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Expected an integer, got {value!r}")


def release_year(release_date):
    """Spotify release dates are 'YYYY', 'YYYY-MM' or 'YYYY-MM-DD'"""
    if not release_date:
        return None
    try:
        return int(str(release_date).split('-')[0])
    except ValueError:
        return None


def chunked(items, size):
    """Yield successive slices of at most size items"""
    for i in range(0, len(items), size):
        yield items[i:i + size]
