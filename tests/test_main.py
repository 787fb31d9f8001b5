import json
from datetime import date

import pytest

from mailtrust.config import DEFAULT_PHISHING_PATTERNS, Config
from mailtrust.main import build_parser, run_command, seed_database
from mailtrust.models import Message
from mailtrust.storage import Database


def _config(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "allowlist.txt").write_text("paypal.com\nvietcombank.com.vn bank\n", encoding="utf-8")
    (config_dir / "denylist.txt").write_text("evil.example\n", encoding="utf-8")
    return Config(data_dir=tmp_path / "data", config_dir=config_dir)


def test_parser_commands():
    parser = build_parser()

    args = parser.parse_args(["aggregate-metrics", "--date", "2024-03-10"])
    assert args.command == "aggregate-metrics"
    assert args.date == date(2024, 3, 10)

    assert parser.parse_args(["aggregate-metrics"]).date is None
    assert parser.parse_args(["stats", "--user", "u1", "--days", "3"]).days == 3
    assert parser.parse_args(["run-rules", "--user", "u1"]).user == "u1"
    assert parser.parse_args(["classify", "--user", "u1"]).message_ids is None
    assert parser.parse_args(["classify", "--user", "u1", "--message-id", "a", "--message-id", "b"]).message_ids == ["a", "b"]

    with pytest.raises(SystemExit):
        parser.parse_args(["aggregate-metrics", "--date", "yesterday"])
    with pytest.raises(SystemExit):
        parser.parse_args(["rebuild-domains"])


@pytest.mark.asyncio
async def test_seed_is_repeatable(tmp_path):
    config = _config(tmp_path)
    async with Database(config.database_path) as db:
        first = await seed_database(db, config)
        second = await seed_database(db, config)

        assert first == second == {
            "patterns": len(DEFAULT_PHISHING_PATTERNS),
            "legitimate_domains": 2,
            "blacklisted_domains": 1,
        }
        assert len(await db.list_active_phishing_patterns()) == len(DEFAULT_PHISHING_PATTERNS)
        assert await db.list_blacklisted_domains() == ["evil.example"]
        assert (await db.get_legitimate_domain("vietcombank.com.vn"))["category"] == "bank"


@pytest.mark.asyncio
async def test_stats_command_prints_json(tmp_path, capsys):
    config = _config(tmp_path)
    args = build_parser().parse_args(["stats", "--user", "u1", "--days", "7"])

    code = await run_command(args, config)

    assert code == 0
    printed = json.loads(capsys.readouterr().out)
    assert printed["total_classifications"] == 0


@pytest.mark.asyncio
async def test_aggregate_command_succeeds_on_empty_database(tmp_path):
    config = _config(tmp_path)
    args = build_parser().parse_args(["aggregate-metrics", "--date", "2024-03-10"])
    assert await run_command(args, config) == 0


@pytest.mark.asyncio
async def test_classify_command_only_touches_unclassified_own_messages(tmp_path, capsys):
    config = _config(tmp_path)
    async with Database(config.database_path) as db:
        await db.upsert_message(Message(id="new", user_id="u1", from_address="boss@corp.example", subject="Sprint deadline").to_row())
        await db.upsert_message(Message(id="done", user_id="u1", from_address="x@shop.example", category="promotion").to_row())
        await db.upsert_message(Message(id="theirs", user_id="u2", from_address="y@corp.example").to_row())

    code = await run_command(build_parser().parse_args(["classify", "--user", "u1"]), config)
    printed = json.loads(capsys.readouterr().out)

    assert code == 0
    assert [row["message_id"] for row in printed] == ["new"]
    assert printed[0]["category"] == "work"
    assert printed[0]["source"] == "keyword"

    code = await run_command(build_parser().parse_args(["classify", "--user", "u1", "--message-id", "theirs"]), config)
    assert code == 0
    assert json.loads(capsys.readouterr().out) == []

    async with Database(config.database_path) as db:
        assert (await db.get_message("new"))["category"] == "work"
        assert (await db.get_message("done"))["category"] == "promotion"
        assert (await db.get_message("theirs"))["category"] is None
