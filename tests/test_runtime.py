import httpx
import pytest

from mailtrust.classification import HTTPClassificationOracle
from mailtrust.config import load_config
from mailtrust.models import Message
from mailtrust.runtime import MailTrustRuntime
from mailtrust.storage import Database

HEURISTICS = """
phishing:
  suspicious_tlds: [zip]
classification:
  keywords:
    work:
      high: [hackathon, offsite]
"""


def _config(tmp_path, monkeypatch, heuristics=HEURISTICS, **env):
    config_dir = tmp_path / "config"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "heuristics.yaml").write_text(heuristics, encoding="utf-8")
    (config_dir / "allowlist.txt").write_text("paypal.com\n", encoding="utf-8")
    monkeypatch.setenv("CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    for name in ("ORACLE_URL", "ORACLE_API_KEY", "ORACLE_MODEL", "ORACLE_TIMEOUT", "DATABASE_PATH"):
        monkeypatch.delenv(name, raising=False)
    for name, value in env.items():
        monkeypatch.setenv(name, value)
    return load_config()


def _message(**kwargs):
    defaults = {"id": "m1", "user_id": "u1", "from_address": "someone@example.org"}
    defaults.update(kwargs)
    return Message(**defaults)


@pytest.mark.asyncio
async def test_heuristics_overrides_reach_the_detector(tmp_path, monkeypatch):
    config = _config(tmp_path, monkeypatch)

    async with MailTrustRuntime(config) as runtime:
        assert runtime.detector.settings.suspicious_tlds == frozenset({"zip"})

        flagged = await runtime.detector.assess(_message(from_address="a@evil.zip"))
        assert "suspicious_tld" in flagged.reason_types

        # .xyz is only suspicious in the built-in table.
        plain = await runtime.detector.assess(_message(from_address="a@b.xyz"))
        assert "suspicious_tld" not in plain.reason_types


@pytest.mark.asyncio
async def test_heuristics_overrides_reach_keyword_classifier(tmp_path, monkeypatch):
    config = _config(tmp_path, monkeypatch)

    async with MailTrustRuntime(config) as runtime:
        assert runtime.keywords.keywords == {"work": {"high": ["hackathon", "offsite"], "medium": []}}
        result = runtime.keywords.classify("Hackathon offsite plan", "", "team@corp.example")
        assert result.suggested_category == "work"

        outcome = await runtime.pipeline.classify_message(
            "u1", _message(id="k1", from_address="team@corp.example", subject="Hackathon offsite plan")
        )
        assert outcome.category == "work"
        assert outcome.source == "keyword"


@pytest.mark.asyncio
async def test_allowlist_reaches_pattern_cache_through_database(tmp_path, monkeypatch):
    config = _config(tmp_path, monkeypatch)

    async with MailTrustRuntime(config) as runtime:
        await runtime.database.add_legitimate_domain("bank.example")
        await runtime.database.add_blacklisted_domain("evil.example", reason="test")

        snapshot = await runtime.pattern_cache.get()
        assert {"paypal.com", "bank.example"} <= snapshot.whitelist
        assert "evil.example" in snapshot.blacklist

        assessment = await runtime.detector.assess(_message(from_address="service@paypal.com"))
        assert assessment.sender_whitelisted


@pytest.mark.asyncio
async def test_oracle_is_off_without_url(tmp_path, monkeypatch):
    config = _config(tmp_path, monkeypatch)

    async with MailTrustRuntime(config) as runtime:
        assert runtime.oracle is None
        assert runtime.pipeline.oracle is None


@pytest.mark.asyncio
async def test_oracle_is_built_from_config(tmp_path, monkeypatch):
    config = _config(
        tmp_path,
        monkeypatch,
        ORACLE_URL="https://oracle.example/classify",
        ORACLE_TIMEOUT="2.5",
        ORACLE_MODEL="small",
    )
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, text='{"category": "transaction", "confidence": 0.88}')
    )

    async with MailTrustRuntime(config, oracle_transport=transport) as runtime:
        assert isinstance(runtime.oracle, HTTPClassificationOracle)
        assert runtime.oracle.timeout_seconds == 2.5
        assert runtime.oracle.model == "small"
        assert runtime.pipeline.oracle_timeout == 2.5

        outcome = await runtime.pipeline.classify_message("u1", _message(id="o1", subject="Statement"))

    assert outcome.category == "transaction"
    assert outcome.source == "oracle"


@pytest.mark.asyncio
async def test_runtime_leaves_injected_database_open(tmp_path, monkeypatch):
    config = _config(tmp_path, monkeypatch)
    async with Database(config.database_path) as db:
        async with MailTrustRuntime(config, database=db) as runtime:
            assert runtime.database is db
        assert await db.list_verified_domains() == []
