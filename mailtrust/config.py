"""Configuration management for MailTrust."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Set

import yaml
from dotenv import load_dotenv

from .constants import (
    LOW_CONFIDENCE_THRESHOLD,
    PATTERN_CACHE_TTL_SECONDS,
    REPUTATION_CONFIDENCE_THRESHOLD,
    RULES_SCAN_LIMIT,
    Category,
    DomainAction,
)
from .utils.domains import load_domain_entries, load_domain_list
from .utils.similarity import DEFAULT_SUBSTITUTIONS

logger = logging.getLogger(__name__)

PHISHING_PATTERN_TYPES = ("urgency", "threat", "request", "prize", "financial")

# Default heuristics for phishing detection. These can be overridden via
# config/heuristics.yaml without touching code.
DEFAULT_PHISHING_PATTERNS: list[dict] = [
    {"type": "urgency", "value": "urgent action required", "severity": 15, "description": "Urgent call to action"},
    {"type": "urgency", "value": "within 24 hours", "severity": 15, "description": "Artificial deadline"},
    {"type": "urgency", "value": "final notice", "severity": 15, "description": "Final notice pressure"},
    {"type": "urgency", "value": "act now", "severity": 10, "description": "Pressure to act now"},
    {"type": "urgency", "value": "expires today", "severity": 10, "description": "Expiry pressure"},
    {"type": "threat", "value": "your account will be suspended", "severity": 25, "description": "Account suspension threat"},
    {"type": "threat", "value": "account has been locked", "severity": 25, "description": "Account lock threat"},
    {"type": "threat", "value": "unauthorized access", "severity": 20, "description": "Security scare"},
    {"type": "threat", "value": "legal action", "severity": 20, "description": "Legal threat"},
    {"type": "request", "value": "confirm your password", "severity": 30, "description": "Asks for a password"},
    {"type": "request", "value": "verify your identity", "severity": 25, "description": "Asks for identity verification"},
    {"type": "request", "value": "enter your pin", "severity": 30, "description": "Asks for a PIN"},
    {"type": "request", "value": "social security number", "severity": 30, "description": "Asks for an SSN"},
    {"type": "request", "value": "update your payment", "severity": 25, "description": "Asks for payment details"},
    {"type": "prize", "value": "you have won", "severity": 25, "description": "Prize claim"},
    {"type": "prize", "value": "claim your prize", "severity": 25, "description": "Prize claim"},
    {"type": "prize", "value": "lottery", "severity": 20, "description": "Lottery lure"},
    {"type": "financial", "value": "gift card", "severity": 20, "description": "Gift card payment"},
    {"type": "financial", "value": "wire transfer", "severity": 15, "description": "Wire transfer request"},
    {"type": "financial", "value": "bank details", "severity": 20, "description": "Asks for bank details"},
]

DEFAULT_SUSPICIOUS_TLDS: set[str] = {
    "xyz",
    "top",
    "click",
    "link",
    "work",
    "gq",
    "ml",
    "cf",
    "ga",
    "tk",
    "buzz",
    "fit",
    "icu",
    "monster",
    "surf",
    "rest",
    "beauty",
    "hair",
}

DEFAULT_URL_SHORTENERS: list[str] = [
    "bit.ly",
    "tinyurl.com",
    "goo.gl",
    "t.co",
    "is.gd",
    "buff.ly",
    "ow.ly",
    "short.link",
]

DEFAULT_URL_KEYWORDS: list[str] = [
    "login",
    "verify",
    "secure",
    "account",
    "update",
    "confirm",
    "banking",
]

# Institutions commonly impersonated in the display name.
DEFAULT_BRAND_KEYWORDS: list[str] = [
    "paypal",
    "apple",
    "microsoft",
    "amazon",
    "netflix",
    "chase",
    "wells fargo",
    "bank of america",
    "vietcombank",
    "techcombank",
]

# Behavioural score deltas applied per action-log event.
DEFAULT_ACTION_DELTAS: dict[str, int] = {
    DomainAction.OPEN.value: 2,
    DomainAction.REPLY.value: 3,
    DomainAction.ARCHIVE.value: 0,
    DomainAction.DELETE.value: -2,
    DomainAction.SPAM.value: -10,
    DomainAction.PHISHING_REPORT.value: -25,
    DomainAction.MARK_SAFE.value: 10,
}


@dataclass
class Config:
    """Application configuration."""

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("./data"))
    database_path: Optional[Path] = None
    config_dir: Path = field(default_factory=lambda: Path("./config"))

    log_level: str = "INFO"

    # Reputation / detection
    pattern_cache_ttl: int = PATTERN_CACHE_TTL_SECONDS
    reputation_confidence_threshold: float = REPUTATION_CONFIDENCE_THRESHOLD
    low_confidence_threshold: float = LOW_CONFIDENCE_THRESHOLD

    # Classification oracle
    oracle_url: str = ""
    oracle_api_key: str = ""
    oracle_model: str = ""
    oracle_timeout: float = 15.0

    # Operational limits
    classify_max_concurrency: int = 5
    rules_scan_limit: int = RULES_SCAN_LIMIT
    rules_max_concurrency: int = 8
    metrics_window_days: int = 7
    background_max_attempts: int = 3

    # Loaded lists (domain -> optional tag such as "bank")
    allowlist: dict[str, Optional[str]] = field(default_factory=dict)
    denylist: Set[str] = field(default_factory=set)

    # Heuristics (override via config/heuristics.yaml)
    phishing_patterns: list[dict] = field(default_factory=lambda: list(DEFAULT_PHISHING_PATTERNS))
    suspicious_tlds: Set[str] = field(default_factory=lambda: set(DEFAULT_SUSPICIOUS_TLDS))
    url_shorteners: list[str] = field(default_factory=lambda: list(DEFAULT_URL_SHORTENERS))
    url_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_URL_KEYWORDS))
    brand_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_BRAND_KEYWORDS))
    substitutions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SUBSTITUTIONS))
    action_deltas: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_ACTION_DELTAS))
    # None keeps the built-in keyword table of the heuristic classifier.
    category_keywords: Optional[dict[str, dict[str, list[str]]]] = None

    def __post_init__(self):
        """Ensure paths exist and load lists."""
        self.data_dir = Path(self.data_dir)
        self.config_dir = Path(self.config_dir)
        if self.database_path is None:
            self.database_path = self.data_dir / "mailtrust.db"
        self.database_path = Path(self.database_path)

        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._load_lists()

    def _load_lists(self):
        """Load allowlist and denylist from config files."""
        allowlist_path = self.config_dir / "allowlist.txt"
        denylist_path = self.config_dir / "denylist.txt"

        if allowlist_path.exists():
            self.allowlist = load_domain_entries(self._read_lines(allowlist_path))
        if denylist_path.exists():
            self.denylist = load_domain_list(self._read_lines(denylist_path))

    @staticmethod
    def _read_lines(path: Path) -> list[str]:
        with open(path, encoding="utf-8") as f:
            return f.readlines()


def _load_heuristics(config_dir: Path) -> dict:
    """Load heuristic overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except Exception as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("heuristics.yaml must contain a mapping, ignoring it")
        return {}

    def _coerce_patterns(raw, default):
        items: list[dict] = []
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            pattern_type = str(entry.get("type") or "").strip().lower()
            value = str(entry.get("value") or "").strip().lower()
            if pattern_type not in PHISHING_PATTERN_TYPES or not value:
                logger.warning("Skipping invalid phishing pattern: %r", entry)
                continue
            try:
                severity = int(entry.get("severity"))
            except Exception:
                logger.warning("Skipping phishing pattern with bad severity: %r", entry)
                continue
            description = str(entry.get("description") or "").strip() or f"{pattern_type} pattern match"
            items.append({
                "type": pattern_type,
                "value": value,
                "severity": max(0, min(100, severity)),
                "description": description,
            })
        return items or default

    def _coerce_str_list(raw, default):
        if not isinstance(raw, (list, tuple, set)):
            return default
        items = [str(item).strip().lower() for item in raw if str(item or "").strip()]
        return items or default

    def _coerce_substitutions(raw, default):
        if not isinstance(raw, dict):
            return default
        table = {
            str(k): str(v)
            for k, v in raw.items()
            if len(str(k)) == 1 and len(str(v)) == 1
        }
        return table or default

    def _coerce_action_deltas(raw, default):
        if not isinstance(raw, dict):
            return default
        deltas = dict(default)
        for key, value in raw.items():
            action = DomainAction.from_string(key)
            if action is None:
                logger.warning("Unknown domain action in heuristics.yaml: %s", key)
                continue
            try:
                deltas[action.value] = int(value)
            except Exception:
                logger.warning("Bad delta for action %s: %r", key, value)
        return deltas

    def _coerce_category_keywords(raw):
        if not isinstance(raw, dict):
            return None
        table: dict[str, dict[str, list[str]]] = {}
        for name, groups in raw.items():
            category = Category.from_string(name)
            if category is Category.UNCATEGORIZED or not isinstance(groups, dict):
                continue
            table[category.value] = {
                "high": _coerce_str_list(groups.get("high"), []),
                "medium": _coerce_str_list(groups.get("medium"), []),
            }
        return table or None

    phishing_cfg = data.get("phishing", {}) or {}
    domain_cfg = data.get("domain", {}) or {}
    classification_cfg = data.get("classification", {}) or {}

    return {
        "phishing_patterns": _coerce_patterns(
            phishing_cfg.get("patterns"), list(DEFAULT_PHISHING_PATTERNS)
        ),
        "suspicious_tlds": set(
            _coerce_str_list(phishing_cfg.get("suspicious_tlds"), sorted(DEFAULT_SUSPICIOUS_TLDS))
        ),
        "url_shorteners": _coerce_str_list(
            phishing_cfg.get("url_shorteners"), list(DEFAULT_URL_SHORTENERS)
        ),
        "url_keywords": _coerce_str_list(
            phishing_cfg.get("url_keywords"), list(DEFAULT_URL_KEYWORDS)
        ),
        "brand_keywords": _coerce_str_list(
            phishing_cfg.get("brand_keywords"), list(DEFAULT_BRAND_KEYWORDS)
        ),
        "substitutions": _coerce_substitutions(
            phishing_cfg.get("substitutions"), dict(DEFAULT_SUBSTITUTIONS)
        ),
        "action_deltas": _coerce_action_deltas(
            domain_cfg.get("action_deltas"), dict(DEFAULT_ACTION_DELTAS)
        ),
        "category_keywords": _coerce_category_keywords(classification_cfg.get("keywords")),
    }


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid integer for %s: %r, using %s", name, raw, default)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid number for %s: %r, using %s", name, raw, default)
        return default


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    config_dir = Path(os.getenv("CONFIG_DIR", "./config"))
    heuristics = _load_heuristics(config_dir)
    database_path = os.getenv("DATABASE_PATH", "").strip()

    return Config(
        data_dir=Path(os.getenv("DATA_DIR", "./data")),
        database_path=Path(database_path) if database_path else None,
        config_dir=config_dir,
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        pattern_cache_ttl=_env_int("PATTERN_CACHE_TTL", PATTERN_CACHE_TTL_SECONDS),
        reputation_confidence_threshold=_env_float(
            "REPUTATION_CONFIDENCE_THRESHOLD", REPUTATION_CONFIDENCE_THRESHOLD
        ),
        oracle_url=os.getenv("ORACLE_URL", "").strip(),
        oracle_api_key=os.getenv("ORACLE_API_KEY", ""),
        oracle_model=os.getenv("ORACLE_MODEL", ""),
        oracle_timeout=_env_float("ORACLE_TIMEOUT", 15.0),
        classify_max_concurrency=_env_int("CLASSIFY_MAX_CONCURRENCY", 5),
        rules_scan_limit=_env_int("RULES_SCAN_LIMIT", RULES_SCAN_LIMIT),
        rules_max_concurrency=_env_int("RULES_MAX_CONCURRENCY", 8),
        metrics_window_days=_env_int("METRICS_WINDOW_DAYS", 7),
        background_max_attempts=_env_int("BACKGROUND_MAX_ATTEMPTS", 3),
        phishing_patterns=heuristics.get("phishing_patterns", list(DEFAULT_PHISHING_PATTERNS)),
        suspicious_tlds=heuristics.get("suspicious_tlds", set(DEFAULT_SUSPICIOUS_TLDS)),
        url_shorteners=heuristics.get("url_shorteners", list(DEFAULT_URL_SHORTENERS)),
        url_keywords=heuristics.get("url_keywords", list(DEFAULT_URL_KEYWORDS)),
        brand_keywords=heuristics.get("brand_keywords", list(DEFAULT_BRAND_KEYWORDS)),
        substitutions=heuristics.get("substitutions", dict(DEFAULT_SUBSTITUTIONS)),
        action_deltas=heuristics.get("action_deltas", dict(DEFAULT_ACTION_DELTAS)),
        category_keywords=heuristics.get("category_keywords"),
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = []
    if config.pattern_cache_ttl <= 0:
        errors.append("PATTERN_CACHE_TTL must be positive")
    if not 0.0 <= config.reputation_confidence_threshold <= 1.0:
        errors.append("REPUTATION_CONFIDENCE_THRESHOLD must be between 0 and 1")
    if config.oracle_timeout <= 0:
        errors.append("ORACLE_TIMEOUT must be positive")
    if config.classify_max_concurrency < 1:
        errors.append("CLASSIFY_MAX_CONCURRENCY must be at least 1")
    if config.rules_max_concurrency < 1:
        errors.append("RULES_MAX_CONCURRENCY must be at least 1")
    if config.rules_scan_limit < 1:
        errors.append("RULES_SCAN_LIMIT must be at least 1")
    if config.metrics_window_days < 1:
        errors.append("METRICS_WINDOW_DAYS must be at least 1")
    if config.background_max_attempts < 1:
        errors.append("BACKGROUND_MAX_ATTEMPTS must be at least 1")

    if not config.oracle_url:
        # Classification still runs on reputation, phishing and keyword heuristics.
        logger.info("No ORACLE_URL configured; classification will use heuristics only")

    return errors
