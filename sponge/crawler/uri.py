"""
Canonical URI value used as the identity key for crawl memoization and dedup.
"""

import posixpath
from typing import Optional
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from ..errors import InvalidURI


WWW_PREFIX = 'www.'
SUPPORTED_SCHEMES = {'http', 'https'}
DEFAULT_PORTS = {'http': 80, 'https': 443}

# Characters left unescaped inside a single path segment / the query string
PATH_SEGMENT_SAFE = "!$&'()*+,;=:@-._~"
QUERY_SAFE = "!$&'()*+,;=:@-._~/?%"


class CrawlURI:
    """
    Immutable canonical absolute http(s) URI.

    Two instances are equal iff their canonical strings are equal, which makes
    them safe keys for the crawler's shared maps.
    """

    __slots__ = ('uri', 'scheme', 'host', 'port', 'path', 'query')

    def __init__(self, uri: str, scheme: str, host: str, port: Optional[int],
                 path: str, query: str):
        object.__setattr__(self, 'uri', uri)
        object.__setattr__(self, 'scheme', scheme)
        object.__setattr__(self, 'host', host)
        object.__setattr__(self, 'port', port)
        object.__setattr__(self, 'path', path)
        object.__setattr__(self, 'query', query)

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __eq__(self, other) -> bool:
        return isinstance(other, CrawlURI) and self.uri == other.uri

    def __hash__(self) -> int:
        return hash(self.uri)

    def __str__(self) -> str:
        return self.uri

    def __repr__(self) -> str:
        return f"CrawlURI({self.uri!r})"

    @property
    def filename(self) -> str:
        """Last segment of the path, empty for directory-like paths."""
        return posixpath.basename(self.path)

    @property
    def directory(self) -> str:
        """Path up to and including the last slash."""
        return self.path[:len(self.path) - len(self.filename)]

    @property
    def extension(self) -> str:
        """Lower-case extension of the filename, without the dot."""
        _, ext = posixpath.splitext(unquote(self.filename))
        return ext[1:].lower()


def normalize(raw: str) -> CrawlURI:
    """
    Normalize a raw absolute URI string into a CrawlURI.

    Args:
        raw: Absolute URI string

    Returns:
        The canonical CrawlURI

    Raises:
        InvalidURI: if the scheme is not http(s), the host is empty, or the
            string cannot be parsed
    """
    if raw is None:
        raise InvalidURI("URI cannot be empty")

    try:
        parsed = urlsplit(raw.strip())
        scheme = parsed.scheme.lower()
        hostname = parsed.hostname
        port = parsed.port
    except ValueError as e:
        raise InvalidURI(f"Malformed URI {raw!r}: {e}") from e

    if scheme not in SUPPORTED_SCHEMES:
        raise InvalidURI(f"Unsupported scheme: {scheme or '<none>'}")

    if not hostname:
        raise InvalidURI("Hostname cannot be empty")

    host = _normalize_host(hostname)
    if not host:
        raise InvalidURI("Hostname cannot be empty")

    if port == DEFAULT_PORTS[scheme]:
        port = None

    netloc = f"[{host}]" if ':' in host else host
    if parsed.username is not None:
        userinfo = quote(unquote(parsed.username), safe="!$&'()*+,;=-._~")
        if parsed.password is not None:
            userinfo += ':' + quote(unquote(parsed.password), safe="!$&'()*+,;=-._~")
        netloc = f"{userinfo}@{netloc}"
    if port is not None:
        netloc = f"{netloc}:{port}"

    path = _normalize_path(parsed.path)
    query = quote(parsed.query, safe=QUERY_SAFE)

    uri = urlunsplit((scheme, netloc, path, query, ''))
    return CrawlURI(uri, scheme, host, port, path, query)


def try_normalize(raw: str) -> Optional[CrawlURI]:
    """Normalize a string, returning None instead of raising on invalid input."""
    try:
        return normalize(raw)
    except InvalidURI:
        return None


def is_visitable_host(host: str, root_host: str, include_subdomains: bool) -> bool:
    """Check if a host is the root host or, when enabled, one of its subdomains."""
    if host == root_host:
        return True

    return include_subdomains and host.endswith('.' + root_host)


def _normalize_host(hostname: str) -> str:
    host = hostname.lower().rstrip('.')

    if host.startswith(WWW_PREFIX):
        host = host[len(WWW_PREFIX):]

    if ':' in host:
        return host

    try:
        host = host.encode('idna').decode('ascii')
    except UnicodeError as e:
        raise InvalidURI(f"Invalid hostname {hostname!r}: {e}") from e

    return host


def _normalize_path(path: str) -> str:
    if not path:
        return ''

    raw_segments = path.split('/')
    if path.startswith('/'):
        raw_segments = raw_segments[1:]

    segments = []
    for segment in raw_segments:
        decoded = unquote(segment)
        if decoded == '.':
            continue
        if decoded == '..':
            if segments:
                segments.pop()
            continue
        segments.append(quote(decoded, safe=PATH_SEGMENT_SAFE))

    # Keep a trailing slash when the original path was directory-like
    if unquote(raw_segments[-1]) in ('.', '..'):
        segments.append('')

    return '/' + '/'.join(segments)
