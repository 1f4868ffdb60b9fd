"""
URL utilities for public route links.

Two concerns live here:
- turning the configured ROUTE_LINKS_BASE_URL (full URL or bare host) into
  the base that shareable /view?id=... links are built on
- deciding whether the Referer of a public route-link read comes from an
  allowed host

Usage:
    from utils.url_validator import normalize_base_url, is_allowed_referer

    base = normalize_base_url(config.ROUTE_LINKS_BASE_URL)
    if not is_allowed_referer(request.headers.get('Referer'), allowed_hosts):
        return jsonify({'error': 'Access not allowed from this origin'}), 403
"""

from typing import Iterable, List, Optional
from urllib.parse import urlparse

# Always allowed for local development
LOCAL_HOSTS = ['localhost', '127.0.0.1']


def normalize_base_url(base_url: Optional[str]) -> Optional[str]:
    """
    Normalize a configured base URL.

    Adds https:// when the scheme is missing and trims trailing slashes.

    Examples:
        >>> normalize_base_url('maps.example.org/')
        'https://maps.example.org'
        >>> normalize_base_url('http://localhost:3000')
        'http://localhost:3000'
        >>> normalize_base_url('   ') is None
        True
    """
    if not base_url or not base_url.strip():
        return None

    candidate = base_url.strip()
    if not candidate.lower().startswith(('http://', 'https://')):
        candidate = f"https://{candidate}"
    return candidate.rstrip('/')


def build_view_url(link_id: str, base_url: Optional[str] = None) -> str:
    """
    Build the viewer URL for a route link.

    Examples:
        >>> build_view_url('0a1b2c3d4e5f', 'https://maps.example.org/')
        'https://maps.example.org/view?id=0a1b2c3d4e5f'
        >>> build_view_url('0a1b2c3d4e5f')
        '/view?id=0a1b2c3d4e5f'
    """
    base = normalize_base_url(base_url)
    if not base:
        return f"/view?id={link_id}"
    return f"{base}/view?id={link_id}"


def extract_allowed_hosts(configured: Optional[str]) -> List[str]:
    """
    Extract lower-cased hostnames from a comma/semicolon separated list of
    URLs or bare hosts. Local hosts are always included.

    Examples:
        >>> extract_allowed_hosts('https://maps.example.org/app; viewer.example.net:8443')
        ['localhost', '127.0.0.1', 'maps.example.org', 'viewer.example.net']
    """
    hosts: List[str] = list(LOCAL_HOSTS)
    if not configured:
        return hosts

    for part in configured.replace(';', ',').split(','):
        candidate = part.strip()
        if not candidate:
            continue

        to_parse = candidate if '://' in candidate else f"https://{candidate}"
        try:
            hostname = urlparse(to_parse).hostname
        except ValueError:
            hostname = None

        if hostname and hostname not in hosts:
            hosts.append(hostname.lower())

    return hosts


def is_allowed_referer(referer: Optional[str], allowed_hosts: Iterable[str]) -> bool:
    """
    Check a Referer header against allowed hosts (exact host or subdomain).

    A missing or empty Referer is allowed: links are meant to be opened
    directly. A Referer that cannot be parsed is rejected.

    Examples:
        >>> is_allowed_referer('https://app.maps.example.org/view', ['maps.example.org'])
        True
        >>> is_allowed_referer('https://evil.example.com/', ['maps.example.org'])
        False
        >>> is_allowed_referer(None, ['maps.example.org'])
        True
    """
    if not referer or not referer.strip():
        return True

    try:
        host = urlparse(referer.strip()).hostname
    except ValueError:
        return False

    if not host:
        return False

    host = host.lower()
    for allowed in allowed_hosts:
        allowed = allowed.lower()
        if host == allowed or host.endswith(f".{allowed}"):
            return True
    return False
