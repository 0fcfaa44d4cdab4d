import re
from urllib.parse import parse_qs, urlparse, urlunparse

VALID_HOSTS = frozenset(
    {
        "maps.google.com",
        "www.google.com",
        "google.com",
        "maps.app.goo.gl",
        "goo.gl",
    }
)

_COORDINATES_PATH_REGEX = re.compile(r"^/maps/@-?\d+(?:\.\d+)?,-?\d+(?:\.\d+)?")


def validate_maps_url(url: str) -> tuple[bool, str | None]:
    value = (url or "").strip()
    if not value:
        return False, "URL is required."

    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"}:
        return False, "URL must start with http:// or https://."

    host = (parsed.hostname or "").lower()
    if host not in VALID_HOSTS:
        return False, f"Unsupported host '{host or value}'. Only Google Maps links are accepted."

    if host in {"maps.app.goo.gl", "goo.gl"}:
        if len(parsed.path.strip("/")) == 0:
            return False, "Short link is missing its identifier."
        if host == "goo.gl" and not parsed.path.startswith("/maps"):
            return False, "Only goo.gl/maps short links are accepted."
        return True, None

    path = parsed.path or ""
    query = parse_qs(parsed.query)

    if path.startswith("/maps/place/") or path.startswith("/maps/search/"):
        return True, None
    if path == "/search" and query.get("q"):
        return True, None
    if path.rstrip("/") == "/maps" and (query.get("place_id") or query.get("cid") or query.get("q")):
        return True, None
    if _COORDINATES_PATH_REGEX.match(path):
        return True, None

    return False, "URL does not point to a Google Maps place."


def normalize_maps_url(url: str) -> str:
    """Force https, lowercase the host and drop the fragment."""
    parsed = urlparse((url or "").strip())
    host = (parsed.netloc or "").lower()
    return urlunparse(("https", host, parsed.path, parsed.params, parsed.query, ""))


def is_valid_review_url(url: str | None) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and (parsed.hostname or "").lower() in VALID_HOSTS
