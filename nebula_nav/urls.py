from urllib.parse import urlencode, urlparse

FAVICON_ENDPOINT = "https://www.google.com/s2/favicons"


def normalize_link_url(url: str) -> str:
    """
    Make a user-entered address usable as a link:
    - Strip surrounding whitespace
    - Prefix https:// when no http(s) scheme is given
    """
    url = url.strip()
    if not url or url.startswith("http"):
        return url
    return f"https://{url}"


def favicon_url(url: str, size: int = 64) -> str:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return ""
    if not host:
        return ""
    return f"{FAVICON_ENDPOINT}?{urlencode({'domain': host, 'sz': size})}"


def icon_for(icon: str | None, url: str) -> str:
    if icon and icon.strip():
        return icon
    return favicon_url(url)
