"""Component wiring: builds every MailTrust service from one Config."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from .cache import PatternCache, database_loader
from .classification import (
    ClassificationLogger,
    ClassificationPipeline,
    HTTPClassificationOracle,
    KeywordClassifier,
)
from .config import Config
from .phishing import DetectorSettings, PhishingDetector, PhishingRecords
from .reputation import DomainReputationStore, SenderReputationStore
from .rules import RulesEngine
from .storage import Database
from .tasks import BackgroundQueue

logger = logging.getLogger(__name__)


class MailTrustRuntime:
    """
    Owns the database, the pattern cache and every service built on them.

    Usage:
        async with MailTrustRuntime(config) as runtime:
            outcome = await runtime.pipeline.classify_message(user_id, message)
    """

    def __init__(
        self,
        config: Config,
        database: Optional[Database] = None,
        oracle_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._owns_database = database is None
        self.database = database or Database(config.database_path)

        self.pattern_cache = PatternCache(
            database_loader(self.database, allowlist=config.allowlist, denylist=config.denylist),
            ttl_seconds=config.pattern_cache_ttl,
        )
        self.detector = PhishingDetector(self.pattern_cache, DetectorSettings.from_config(config))
        self.records = PhishingRecords(self.database)

        self.senders = SenderReputationStore(
            self.database, confidence_threshold=config.reputation_confidence_threshold
        )
        self.domains = DomainReputationStore(self.database, action_deltas=config.action_deltas)

        self.keywords = KeywordClassifier(keywords=config.category_keywords)
        self.oracle: Optional[HTTPClassificationOracle] = None
        if config.oracle_url:
            self.oracle = HTTPClassificationOracle(
                config.oracle_url,
                api_key=config.oracle_api_key,
                model=config.oracle_model,
                timeout_seconds=config.oracle_timeout,
                transport=oracle_transport,
            )
        self.classification_log = ClassificationLogger(
            self.database, low_confidence_threshold=config.low_confidence_threshold
        )
        self.pipeline = ClassificationPipeline(
            self.database,
            self.senders,
            self.domains,
            self.detector,
            oracle=self.oracle,
            keywords=self.keywords,
            classification_logger=self.classification_log,
            records=self.records,
            oracle_timeout=config.oracle_timeout,
            max_concurrency=config.classify_max_concurrency,
        )

        self.rules = RulesEngine(
            self.database,
            scan_limit=config.rules_scan_limit,
            max_concurrency=config.rules_max_concurrency,
        )
        self.queue = BackgroundQueue(max_attempts=config.background_max_attempts)

    async def start(self) -> None:
        if self._owns_database:
            await self.database.connect()
        await self.queue.start()
        logger.info(
            "MailTrust runtime started (oracle=%s, database=%s)",
            "on" if self.oracle else "off",
            self.config.database_path,
        )

    async def stop(self) -> None:
        await self.queue.stop()
        if self.oracle:
            await self.oracle.close()
        if self._owns_database:
            await self.database.close()

    async def __aenter__(self) -> "MailTrustRuntime":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
