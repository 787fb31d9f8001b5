"""Address and domain normalization utilities."""

from __future__ import annotations

import re
from urllib.parse import urlparse

import tldextract

# Offline extractor: use the bundled public-suffix snapshot, never fetch it.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
IPV4_PATTERN = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")


def normalize_email(value: str | None) -> str:
    """Lowercase and trim an email address."""
    return (value or "").strip().lower()


def extract_domain(email: str | None) -> str:
    """Return the part after '@' (lower-cased), or '' when there is none."""
    parts = normalize_email(email).split("@")
    return parts[-1].strip(".") if len(parts) > 1 else ""


def canonicalize_domain(value: str) -> str:
    """
    Normalize a domain/URL to a canonical host key.

    - Lowercase
    - Strip leading "www."
    - Ignore port/path/query/fragment
    """
    raw = (value or "").strip()
    if not raw:
        return ""

    candidate = raw if "://" in raw else f"https://{raw}"
    try:
        parsed = urlparse(candidate)
        host = parsed.hostname or raw.split("/")[0]
    except ValueError:
        host = raw.split("/")[0]
    host = host.strip().lower().strip(".")
    if host.startswith("www.") and len(host) > 4:
        host = host[4:]
    return host


def domain_label(value: str) -> str:
    """Registrable name without its public suffix ("paypal" for "mail.paypal.co.uk")."""
    host = canonicalize_domain(value)
    if not host:
        return ""
    extracted = _EXTRACT(host)
    if extracted.domain:
        return extracted.domain.lower()
    return host.split(".")[0]


def top_level_label(domain: str) -> str:
    """Last dot-separated label of a domain ('' when empty)."""
    parts = (domain or "").strip(".").split(".")
    return parts[-1].lower() if parts and parts[-1] else ""


def extract_urls(text: str | None) -> list[str]:
    """Find http(s) URLs in plain text or HTML, in order of appearance."""
    return URL_PATTERN.findall(text or "")


def is_ip_address(host: str) -> bool:
    return bool(IPV4_PATTERN.match(host or ""))


def load_domain_entries(lines: list[str]) -> dict[str, str | None]:
    """
    Parse list-file lines of the form "domain [tag]".

    Comments (#) and blank lines are ignored; domains are canonicalized and
    tags lower-cased. Later duplicates win.
    """
    entries: dict[str, str | None] = {}
    for line in lines:
        value = line.split("#", 1)[0].strip()
        if not value:
            continue
        parts = value.split()
        normalized = canonicalize_domain(parts[0])
        if not normalized:
            continue
        entries[normalized] = parts[1].lower() if len(parts) > 1 else None
    return entries


def load_domain_list(lines: list[str]) -> set[str]:
    """Normalize list-file lines (comments and blanks ignored) to canonical hosts."""
    return set(load_domain_entries(lines))
