from urllib.parse import urlparse


ALLOWED_URL_SCHEMES = {"http", "https"}


def clean_text(value) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip()


def is_valid_http_url(value) -> bool:
    if not isinstance(value, str) or not value:
        return False
    try:
        parsed = urlparse(value)
        # Touching .port raises on garbage like "http://host:notaport".
        parsed.port
    except ValueError:
        return False
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES:
        return False
    if any(ch.isspace() for ch in parsed.netloc):
        return False
    return bool(parsed.hostname)


def host_from_url(url: str) -> str:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return url
    return host or url
