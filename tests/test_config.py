from mailtrust.config import (
    DEFAULT_ACTION_DELTAS,
    DEFAULT_PHISHING_PATTERNS,
    Config,
    load_config,
    validate_config,
)


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_config_loads_allow_and_deny_lists(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    _write(config_dir / "allowlist.txt", "paypal.com\nvietcombank.com.vn bank\n# skip\n")
    _write(config_dir / "denylist.txt", "evil.example\n")

    config = Config(data_dir=tmp_path / "data", config_dir=config_dir)

    assert config.allowlist == {"paypal.com": None, "vietcombank.com.vn": "bank"}
    assert config.denylist == {"evil.example"}
    assert config.database_path == tmp_path / "data" / "mailtrust.db"
    assert (tmp_path / "data").is_dir()


def test_load_config_reads_env_and_heuristics(tmp_path, monkeypatch):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    _write(
        config_dir / "heuristics.yaml",
        """
phishing:
  patterns:
    - {type: urgency, value: "Respond Immediately", severity: 12}
    - {type: bogus, value: "ignored", severity: 5}
    - {type: threat, value: "no severity"}
  suspicious_tlds: [zip, mov]
domain:
  action_deltas:
    open: 4
    not_an_action: 9
classification:
  keywords:
    work:
      high: [standup]
    nonsense:
      high: [x]
""",
    )
    monkeypatch.setenv("CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("ORACLE_TIMEOUT", "2.5")
    monkeypatch.setenv("RULES_SCAN_LIMIT", "not-a-number")

    config = load_config()

    assert config.phishing_patterns == [
        {"type": "urgency", "value": "respond immediately", "severity": 12, "description": "urgency pattern match"}
    ]
    assert config.suspicious_tlds == {"zip", "mov"}
    assert config.action_deltas["open"] == 4
    assert config.action_deltas["delete"] == DEFAULT_ACTION_DELTAS["delete"]
    assert config.category_keywords == {"work": {"high": ["standup"], "medium": []}}
    assert config.oracle_timeout == 2.5
    assert config.rules_scan_limit == 500


def test_load_config_defaults_without_heuristics_file(tmp_path, monkeypatch):
    monkeypatch.setenv("CONFIG_DIR", str(tmp_path / "missing"))
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))

    config = load_config()

    assert config.phishing_patterns == DEFAULT_PHISHING_PATTERNS
    assert config.category_keywords is None
    assert validate_config(config) == []


def test_validate_config_reports_bad_values(tmp_path):
    config = Config(data_dir=tmp_path / "data", config_dir=tmp_path)
    config.pattern_cache_ttl = 0
    config.reputation_confidence_threshold = 1.5
    config.classify_max_concurrency = 0

    errors = validate_config(config)

    assert "PATTERN_CACHE_TTL must be positive" in errors
    assert "REPUTATION_CONFIDENCE_THRESHOLD must be between 0 and 1" in errors
    assert "CLASSIFY_MAX_CONCURRENCY must be at least 1" in errors
