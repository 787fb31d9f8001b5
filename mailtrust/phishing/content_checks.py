"""Layer 2: content pattern and URL analysis."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from ..cache import PatternSnapshot
from ..utils.domains import canonicalize_domain, extract_urls, is_ip_address, top_level_label
from ..utils.similarity import find_spoof_target
from .models import DetectorSettings, Finding

logger = logging.getLogger(__name__)

SUSPICIOUS_URL_SEVERITY = 25
COMBO_ATTACK_SEVERITY = 20
URL_PATTERN_MAX_LEN = 100

# A message hitting one of each of these types gets the combo bonus.
COMBO_TYPES = ("urgency", "threat", "request")


def check_url(url: str, snapshot: PatternSnapshot, settings: DetectorSettings) -> Optional[str]:
    """Return why a URL is suspicious, or None. First matching check wins."""
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname
    except ValueError:
        return "Malformed URL"
    if not hostname:
        return "Malformed URL"

    hostname = hostname.lower()
    tld = top_level_label(hostname)
    if tld and tld in settings.suspicious_tlds:
        return f"Suspicious TLD: .{tld}"

    if any(shortener in hostname for shortener in settings.url_shorteners):
        return "URL shortener detected"

    if is_ip_address(hostname):
        return "IP address in URL"

    path = (parsed.path or "").lower()
    host_key = canonicalize_domain(hostname)
    has_keyword = any(k in hostname or k in path for k in settings.url_keywords)
    if has_keyword and host_key not in snapshot.whitelist:
        target = find_spoof_target(host_key, snapshot.whitelist, settings.substitutions)
        if target:
            return f"Spoofed domain mimicking {target}"

    return None


def analyze_content(
    subject: Optional[str],
    body_text: Optional[str],
    body_html: Optional[str],
    snapshot: PatternSnapshot,
    settings: DetectorSettings,
) -> list[Finding]:
    """Match stored patterns against subject+body and inspect every body URL."""
    findings: list[Finding] = []
    content = f"{subject or ''} {body_text or ''}".lower()

    for pattern_type, entries in snapshot.patterns.items():
        for entry in entries:
            if entry.value and entry.value in content:
                findings.append(
                    Finding(
                        pattern_type,
                        entry.value,
                        entry.severity,
                        entry.description or f"{pattern_type} pattern match",
                    )
                )

    for url in extract_urls(f"{body_text or ''} {body_html or ''}"):
        reason = check_url(url, snapshot, settings)
        if reason:
            findings.append(
                Finding(
                    "suspicious_url",
                    url[:URL_PATTERN_MAX_LEN],
                    SUSPICIOUS_URL_SEVERITY,
                    reason,
                )
            )

    found_types = {f.type for f in findings}
    if all(t in found_types for t in COMBO_TYPES):
        findings.append(
            Finding(
                "combo_attack",
                " + ".join(COMBO_TYPES),
                COMBO_ATTACK_SEVERITY,
                "Phishing combo: urgency + threat + sensitive request",
            )
        )

    return findings
