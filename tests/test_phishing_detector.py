"""Tests for the phishing detector."""

import pytest

from mailtrust.cache import PatternCache, PatternSnapshot
from mailtrust.config import DEFAULT_PHISHING_PATTERNS
from mailtrust.constants import RiskBand
from mailtrust.models import Message
from mailtrust.phishing import (
    DetectorSettings,
    Finding,
    PhishingAssessment,
    PhishingDetector,
    PhishingRecords,
    aggregate,
    dedupe_findings,
)
from mailtrust.storage import Database


def _snapshot(whitelist=("paypal.com", "vietcombank.com.vn"), blacklist=()):
    return PatternSnapshot.build(DEFAULT_PHISHING_PATTERNS, blacklist=blacklist, whitelist=whitelist)


def _detector(snapshot=None):
    return PhishingDetector(PatternCache.fixed(snapshot or _snapshot()), DetectorSettings.defaults())


def _message(**kwargs):
    defaults = {"id": "m1", "user_id": "u1", "from_address": "someone@example.org"}
    defaults.update(kwargs)
    return Message(**defaults)


@pytest.mark.asyncio
async def test_digit_substitution_spoof_is_flagged():
    assessment = await _detector().assess(_message(from_address="support@paypa1.com"))

    spoof = [r for r in assessment.reasons if r.type == "spoofed_domain"]
    assert spoof and spoof[0].severity == 45
    assert assessment.score >= 45
    assert assessment.risk in (RiskBand.MEDIUM.value, RiskBand.HIGH.value, RiskBand.CRITICAL.value)


@pytest.mark.asyncio
async def test_combo_attack_sums_all_severities():
    message = _message(
        subject="Urgent action required",
        body_text="Your account will be suspended. Please confirm your password today.",
    )
    assessment = await _detector().assess(message)

    assert {"urgency", "threat", "request", "combo_attack"} <= assessment.reason_types
    assert assessment.score == 15 + 25 + 30 + 20
    assert assessment.is_phishing
    assert assessment.risk == RiskBand.CRITICAL.value


@pytest.mark.asyncio
async def test_clean_message_is_safe():
    assessment = await _detector().assess(
        _message(subject="Lunch tomorrow?", body_text="See you at noon.")
    )
    assert assessment.score == 0
    assert assessment.risk == RiskBand.SAFE.value
    assert assessment.reasons == []


@pytest.mark.asyncio
async def test_whitelisted_sender_is_capped():
    message = _message(
        from_address="service@paypal.com",
        subject="Urgent action required",
        body_text=(
            "Your account will be suspended. Confirm your password at "
            "http://192.168.0.1/login and http://bit.ly/abc"
        ),
    )
    assessment = await _detector().assess(message)

    assert assessment.sender_whitelisted
    assert assessment.score <= 30
    assert not assessment.is_phishing
    assert all(r.type != "spoofed_domain" for r in assessment.reasons)


@pytest.mark.asyncio
async def test_blacklisted_and_suspicious_tld_sender():
    snapshot = _snapshot(blacklist=("login-alerts.xyz",))
    assessment = await _detector(snapshot).assess(_message(from_address="x@login-alerts.xyz"))
    assert {"blacklist", "suspicious_tld"} <= assessment.reason_types
    assert assessment.score == 70
    assert assessment.is_phishing


@pytest.mark.asyncio
async def test_brand_in_display_name_from_other_domain():
    assessment = await _detector().assess(
        _message(from_name="PayPal Support", from_address="help@random-mailer.example")
    )
    assert "name_domain_mismatch" in assessment.reason_types


@pytest.mark.asyncio
async def test_url_checks():
    body = "\n".join(
        [
            "http://192.168.1.10/verify",
            "https://bit.ly/xyz",
            "https://prize.top/claim",
            "https://paypa1.com/login",
            "https://paypal.com/login",
        ]
    )
    assessment = await _detector().assess(_message(body_text=body))
    url_reasons = sorted(r.description for r in assessment.reasons if r.type == "suspicious_url")
    assert url_reasons == sorted(
        [
            "IP address in URL",
            "URL shortener detected",
            "Suspicious TLD: .top",
            "Spoofed domain mimicking paypal.com",
        ]
    )


def test_repeated_findings_all_count_toward_score():
    repeated = Finding("suspicious_url", "http://bit.ly/a", 25, "URL shortener detected")
    assert dedupe_findings([repeated, repeated]) == [repeated]
    assessment = aggregate([repeated, repeated, repeated], sender_whitelisted=False)
    assert assessment.score == 75
    assert assessment.reasons == [repeated]
    assert assessment.risk == RiskBand.HIGH.value


@pytest.mark.asyncio
async def test_repeated_url_in_text_and_html_is_summed():
    message = _message(
        body_text="Track it here http://bit.ly/x",
        body_html='<a href="http://bit.ly/x">http://bit.ly/x</a>',
    )
    assessment = await _detector().assess(message)

    assert assessment.score == 75
    assert [r.pattern for r in assessment.reasons] == ["http://bit.ly/x"]
    assert assessment.requires_review


@pytest.mark.asyncio
async def test_whitelist_clamp_beats_blacklist_and_content():
    snapshot = _snapshot(blacklist=("paypal.com",))
    message = _message(
        from_address="service@paypal.com",
        subject="Urgent action required",
        body_text="Your account will be suspended. Confirm your password at http://bit.ly/abc",
    )
    assessment = await _detector(snapshot).assess(message)

    assert assessment.sender_whitelisted
    assert assessment.score == 30
    assert assessment.risk == RiskBand.LOW.value
    assert not assessment.is_phishing
    assert {"urgency", "threat", "request", "combo_attack", "suspicious_url"} <= assessment.reason_types


def test_aggregate_caps_score_and_findings():
    findings = [Finding("threat", f"p{i}", 20) for i in range(12)]
    assessment = aggregate(findings, sender_whitelisted=False)
    assert assessment.score == 100
    assert len(assessment.reasons) == 10


@pytest.mark.asyncio
async def test_empty_snapshot_still_runs_structural_checks():
    detector = PhishingDetector(PatternCache.fixed(PatternSnapshot()), DetectorSettings.defaults())
    assessment = await detector.assess(_message(from_address="a@b.xyz", body_text="urgent action required"))
    assert assessment.reason_types == {"suspicious_tld"}


@pytest.mark.asyncio
async def test_cache_failure_never_raises():
    async def broken():
        raise RuntimeError("no database")

    detector = PhishingDetector(PatternCache(broken), DetectorSettings.defaults())
    assessment = await detector.assess(_message(from_address="a@b.xyz"))
    assert assessment.error is None
    assert assessment.reason_types == {"suspicious_tld"}


@pytest.mark.asyncio
async def test_assess_batch_and_metrics():
    detector = _detector()
    messages = [
        _message(id="a", from_address="support@paypa1.com"),
        _message(id="b", subject="hello"),
    ]
    results = await detector.assess_batch(messages)
    assert set(results) == {"a", "b"}
    assert results["b"].score == 0
    summary = detector.metrics.get_summary()
    assert summary["total_assessments"] == 2
    assert summary["finding_types"]["spoofed_domain"]["hits"] == 1


@pytest.mark.asyncio
async def test_records_snapshot_review_and_stats(tmp_path):
    async with Database(tmp_path / "phishing.db") as db:
        message = _message(id="m-flagged")
        await db.upsert_message(message.to_row())
        records = PhishingRecords(db)

        assessment = PhishingAssessment.from_score(80, [Finding("threat", "legal action", 80)])
        assert await records.save_assessment("m-flagged", assessment, category="spam")
        assert not await records.save_assessment("missing", assessment)

        stored = await db.get_message("m-flagged")
        assert stored["phishing_score"] == 80
        assert stored["phishing_risk"] == "critical"
        assert stored["phishing_reasons"][0]["pattern"] == "legal action"
        assert stored["category"] == "spam"

        stats = await records.get_phishing_stats("u1")
        assert stats.total_flagged == 1
        assert stats.unreviewed == 1
        assert stats.by_risk["critical"] == 1

        review = await records.mark_reviewed("m-flagged", safe=True)
        assert review.success and review.marked_safe
        stats = await records.get_phishing_stats("u1")
        assert stats.unreviewed == 0
        assert stats.marked_safe == 1

        missing = await records.mark_reviewed("nope")
        assert missing.success is False
