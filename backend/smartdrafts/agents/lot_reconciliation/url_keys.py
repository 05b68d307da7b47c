"""
URL canonicalization.

Every image reaches the scan in one of several forms (Dropbox share links,
direct content links, links wrapped by the image proxy). canonical_url maps
all of them to one string which is used as the dedup / merge key everywhere.
"""

from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

_DROPBOX_SHARE_HOSTS = {"www.dropbox.com", "dropbox.com"}
_DROPBOX_DIRECT_HOST = "dl.dropboxusercontent.com"
_DROPBOX_DROP_PARAMS = {"dl", "raw"}
_PROXY_MARKER = "image-proxy"


def _unwrap_proxy(url: str) -> str:
    # .../.netlify/functions/image-proxy?url=<encoded source>
    parts = urlsplit(url)
    if _PROXY_MARKER not in parts.path:
        return url
    for name, value in parse_qsl(parts.query, keep_blank_values=True):
        if name == "url" and value:
            return value.strip()
    return url


def _direct_dropbox(url: str) -> str:
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if host not in _DROPBOX_SHARE_HOSTS and host != _DROPBOX_DIRECT_HOST:
        return url
    query = [
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if name not in _DROPBOX_DROP_PARAMS
    ]
    return urlunsplit((parts.scheme or "https", _DROPBOX_DIRECT_HOST, parts.path, urlencode(query), ""))


def canonical_url(url) -> str:
    """Return the canonical form of an image URL ("" for empty / non-string input)."""
    if not isinstance(url, str):
        return ""
    cleaned = url.strip()
    if not cleaned:
        return ""
    try:
        # a proxied link can wrap another proxied link
        for _ in range(3):
            unwrapped = _unwrap_proxy(cleaned)
            if unwrapped == cleaned:
                break
            cleaned = unwrapped
        return _direct_dropbox(cleaned)
    except ValueError:
        # urlsplit rejects a few malformed forms (e.g. bad IPv6 hosts); keep them verbatim
        return cleaned


def basename_from(url) -> str:
    """Last path segment of a URL or path, without its query string."""
    if not isinstance(url, str) or not url.strip():
        return ""
    no_query = url.strip().split("?", 1)[0].split("#", 1)[0]
    return unquote(no_query.rstrip("/").split("/")[-1])


def folder_from(url) -> str:
    """Parent path segment of a URL or path ("" when there is none)."""
    if not isinstance(url, str) or not url.strip():
        return ""
    path = url.strip().split("?", 1)[0].split("#", 1)[0]
    if "://" in path:
        path = urlsplit(path).path
    segments = [segment for segment in path.split("/") if segment]
    if len(segments) < 2:
        return ""
    return unquote(segments[-2])
