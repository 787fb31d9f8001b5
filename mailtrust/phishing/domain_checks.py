"""Layer 1: sender domain analysis."""

from __future__ import annotations

from typing import Optional

from ..cache import PatternSnapshot
from ..utils.domains import extract_domain, top_level_label
from ..utils.similarity import find_spoof_target
from .models import DetectorSettings, Finding

BLACKLIST_SEVERITY = 50
SUSPICIOUS_TLD_SEVERITY = 20
SPOOFED_DOMAIN_SEVERITY = 45
NAME_MISMATCH_SEVERITY = 35


def brand_mismatch(from_name: Optional[str], domain: str, brands: tuple[str, ...]) -> Optional[str]:
    """First brand named in the display name that the sending domain does not carry."""
    name = (from_name or "").lower()
    if not name:
        return None
    compact_domain = domain.replace("-", "")
    for brand in brands:
        brand = brand.lower().strip()
        if brand and brand in name and brand.replace(" ", "") not in compact_domain:
            return brand
    return None


def analyze_domain(
    from_address: str,
    from_name: Optional[str],
    snapshot: PatternSnapshot,
    settings: DetectorSettings,
) -> list[Finding]:
    """Score the sender's domain; a whitelisted domain yields no findings."""
    domain = extract_domain(from_address)
    if not domain:
        return []

    findings: list[Finding] = []
    if domain in snapshot.blacklist:
        findings.append(
            Finding("blacklist", domain, BLACKLIST_SEVERITY, "Known phishing domain")
        )

    if domain in snapshot.whitelist:
        return []

    tld = top_level_label(domain)
    if tld and tld in settings.suspicious_tlds:
        findings.append(
            Finding(
                "suspicious_tld",
                f".{tld}",
                SUSPICIOUS_TLD_SEVERITY,
                "Suspicious TLD commonly used in phishing",
            )
        )

    target = find_spoof_target(domain, snapshot.whitelist, settings.substitutions)
    if target:
        findings.append(
            Finding(
                "spoofed_domain",
                domain,
                SPOOFED_DOMAIN_SEVERITY,
                f"Domain mimics legitimate {target}",
            )
        )

    brand = brand_mismatch(from_name, domain, settings.brand_keywords)
    if brand:
        findings.append(
            Finding(
                "name_domain_mismatch",
                f"Name: {from_name}, Domain: {domain}",
                NAME_MISMATCH_SEVERITY,
                f"Sender name claims to be {brand} but domain doesn't match",
            )
        )

    return findings
