"""
Classification pipeline.

Per message: sender reputation lookup, phishing assessment, oracle call
(skipped when the reputation is confident), resolution, then write-back to
sender and domain reputation, the message snapshot and the decision log.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..constants import Category, ClassificationSource, DomainAction
from ..errors import MailTrustError, OracleError
from ..models import Message
from ..phishing import PhishingAssessment, PhishingDetector, PhishingRecords
from ..reputation import (
    DomainReputationStore,
    ReputationLookup,
    SenderReputationStore,
    resolve_category,
)
from ..tasks import BackgroundQueue
from ..utils.domains import extract_domain
from .keywords import KeywordClassifier
from .logger import NO_LOG_ENTRY, ClassificationLogEntry, ClassificationLogger
from .oracle import ClassificationOracle, OracleClassification

logger = logging.getLogger(__name__)

DEFAULT_ORACLE_TIMEOUT = 15.0
DEFAULT_MAX_CONCURRENCY = 5


@dataclass
class ClassificationOutcome:
    """Decision for one message. `success` is False only when nothing could be decided."""

    message_id: str
    success: bool = True
    category: str = Category.UNCATEGORIZED.value
    source: str = ClassificationSource.KEYWORD.value
    confidence: float = 0.0
    used_reputation: bool = False
    phishing: PhishingAssessment = field(default_factory=PhishingAssessment)
    oracle: Optional[OracleClassification] = None
    oracle_error: Optional[str] = None
    write_errors: list[str] = field(default_factory=list)
    processing_time_ms: int = 0
    error: Optional[str] = None


@dataclass
class FeedbackOutcome:
    success: bool
    message_id: str
    previous_category: Optional[str] = None
    category: Optional[str] = None
    reputation_updated: bool = False
    log_updated: bool = False
    error: Optional[str] = None


@dataclass
class _Decision:
    category: str
    source: str
    confidence: float


class ClassificationPipeline:
    """
    Composes the reputation stores, the phishing detector and the oracle.

    Usage:
        pipeline = ClassificationPipeline(db, senders, domains, detector, oracle=oracle)
        outcome = await pipeline.classify_message(user_id, message)
    """

    def __init__(
        self,
        db,
        senders: SenderReputationStore,
        domains: DomainReputationStore,
        detector: PhishingDetector,
        *,
        oracle: Optional[ClassificationOracle] = None,
        keywords: Optional[KeywordClassifier] = None,
        classification_logger: Optional[ClassificationLogger] = None,
        records: Optional[PhishingRecords] = None,
        oracle_timeout: float = DEFAULT_ORACLE_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    ):
        self.db = db
        self.senders = senders
        self.domains = domains
        self.detector = detector
        self.oracle = oracle
        self.keywords = keywords or KeywordClassifier()
        self.log = classification_logger or ClassificationLogger(db)
        self.records = records or PhishingRecords(db)
        self.oracle_timeout = oracle_timeout
        self.max_concurrency = max(1, int(max_concurrency))

    async def _call_oracle(self, message: Message) -> OracleClassification:
        """One oracle call under the timeout; never retried here."""
        if self.oracle is None:
            raise OracleError("No classification oracle configured")
        try:
            return await asyncio.wait_for(self.oracle.classify(message), timeout=self.oracle_timeout)
        except asyncio.TimeoutError as exc:
            raise OracleError(f"Oracle timed out after {self.oracle_timeout}s") from exc

    def _heuristic_decision(
        self,
        message: Message,
        lookup: ReputationLookup,
        assessment: PhishingAssessment,
        phishing_applies: bool,
    ) -> _Decision:
        """Fallback when the oracle is absent or failed."""
        if phishing_applies:
            return _Decision(Category.SPAM.value, ClassificationSource.RULE_BASED.value, assessment.score / 100)
        if lookup.found and lookup.reputation and lookup.reputation.primary_category:
            return _Decision(
                lookup.reputation.primary_category,
                ClassificationSource.LEARNED.value,
                lookup.reputation.confidence,
            )
        result = self.keywords.classify(message.subject, message.body_text, message.from_address)
        if result.suggested_category:
            return _Decision(result.suggested_category, ClassificationSource.KEYWORD.value, result.confidence)
        return _Decision(Category.UNCATEGORIZED.value, ClassificationSource.KEYWORD.value, 0.0)

    async def _is_marked_safe(self, message_id: str) -> bool:
        try:
            row = await self.db.get_message(message_id)
        except Exception as exc:
            logger.warning("Could not read mark-safe flag for %s: %s", message_id, exc)
            return False
        return bool(row and row.get("is_marked_safe"))

    async def _decide(self, user_id: str, message: Message, outcome: ClassificationOutcome) -> ReputationLookup:
        lookup = await self.senders.lookup(user_id, message.from_address)
        outcome.phishing = await self.detector.assess(message)
        assessment = outcome.phishing
        phishing_applies = assessment.is_phishing and not await self._is_marked_safe(message.id)

        if lookup.should_use_reputation and lookup.suggested_category:
            pipeline = _Decision(Category.UNCATEGORIZED.value, ClassificationSource.SENDER_REPUTATION.value, 0.0)
        else:
            try:
                outcome.oracle = await self._call_oracle(message)
            except OracleError as exc:
                outcome.oracle_error = str(exc)
                if self.oracle is not None:
                    logger.warning("Oracle unavailable for message %s, using heuristics: %s", message.id, exc)
            except Exception as exc:
                outcome.oracle_error = str(exc)
                logger.error("Oracle call crashed for message %s: %s", message.id, exc)

            if outcome.oracle and outcome.oracle.category != Category.UNCATEGORIZED.value:
                pipeline = _Decision(
                    outcome.oracle.category, ClassificationSource.ORACLE.value, outcome.oracle.confidence
                )
            else:
                pipeline = self._heuristic_decision(message, lookup, assessment, phishing_applies)

        resolution = resolve_category(pipeline.category, lookup, pipeline.confidence)
        source = (
            ClassificationSource.SENDER_REPUTATION.value
            if resolution.source == "reputation"
            else pipeline.source
        )
        category, confidence = resolution.final_category, resolution.confidence

        if phishing_applies and category != Category.SPAM.value:
            source = (
                ClassificationSource.HYBRID.value
                if source == ClassificationSource.ORACLE.value
                else ClassificationSource.RULE_BASED.value
            )
            category = Category.SPAM.value
            confidence = max(confidence, assessment.score / 100)
        elif assessment.is_phishing and not phishing_applies:
            logger.debug("Message %s was marked safe; phishing verdict not applied", message.id)

        outcome.category = category
        outcome.source = source
        outcome.confidence = confidence
        outcome.used_reputation = resolution.source == "reputation"
        return lookup

    async def _write_back(
        self,
        user_id: str,
        message: Message,
        lookup: ReputationLookup,
        outcome: ClassificationOutcome,
    ) -> None:
        sender_result = await self.senders.update(user_id, message.from_address, outcome.category)
        if not sender_result.success:
            outcome.write_errors.append(f"sender reputation: {sender_result.error}")

        domain = extract_domain(message.from_address)
        if domain:
            domain_result = await self.domains.record_classification(user_id, domain, outcome.category)
            if not domain_result.success:
                outcome.write_errors.append(f"domain reputation: {domain_result.error}")

        if not await self.records.save_assessment(message.id, outcome.phishing, category=outcome.category):
            outcome.write_errors.append("message snapshot not stored")

        log_result = await self.log.log_classification(
            ClassificationLogEntry(
                user_id=user_id,
                message_id=message.id,
                sender_email=message.from_address,
                subject=message.subject,
                assigned_category=outcome.category,
                ai_confidence=outcome.confidence,
                phishing_score=outcome.phishing.score,
                classification_source=outcome.source,
                used_sender_reputation=outcome.used_reputation,
                sender_reputation_score=lookup.reputation.confidence if lookup.reputation else None,
                processing_time_ms=outcome.processing_time_ms,
            )
        )
        if not log_result.success:
            outcome.write_errors.append(f"classification log: {log_result.error}")

    async def classify_message(self, user_id: str, message: Message) -> ClassificationOutcome:
        """Classify one message. Never raises."""
        started = time.perf_counter()
        outcome = ClassificationOutcome(message_id=message.id)
        try:
            lookup = await self._decide(user_id, message, outcome)
            outcome.processing_time_ms = int((time.perf_counter() - started) * 1000)
            await self._write_back(user_id, message, lookup, outcome)
        except Exception as exc:
            logger.error("Classification failed for message %s: %s", message.id, exc)
            outcome.success = False
            outcome.error = str(exc)
            return outcome

        if outcome.write_errors:
            logger.warning("Message %s classified with write errors: %s", message.id, outcome.write_errors)
        logger.debug(
            "Message %s classified as %s via %s (%.2f)",
            message.id,
            outcome.category,
            outcome.source,
            outcome.confidence,
        )
        return outcome

    async def classify_batch(self, user_id: str, messages: Iterable[Message]) -> list[ClassificationOutcome]:
        """Classify many messages with bounded concurrency, preserving input order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(message: Message) -> ClassificationOutcome:
            async with semaphore:
                return await self.classify_message(user_id, message)

        return list(await asyncio.gather(*(_one(m) for m in messages)))

    async def classify_or_raise(self, user_id: str, message: Message) -> ClassificationOutcome:
        """Background-queue variant: a failed decision raises so the queue can retry."""
        outcome = await self.classify_message(user_id, message)
        if not outcome.success:
            raise MailTrustError(outcome.error or f"classification failed for {message.id}")
        return outcome

    def enqueue_classification(self, queue: BackgroundQueue, user_id: str, message: Message) -> bool:
        """Hand a classification to the background queue without awaiting it."""
        return queue.submit(
            f"classify:{message.id}",
            lambda: self.classify_or_raise(user_id, message),
        )

    # Feedback

    async def _load_message(self, message_id: str) -> Optional[Message]:
        row = await self.db.get_message(message_id)
        return Message.from_row(row) if row else None

    async def record_feedback(
        self,
        user_id: str,
        message_id: str,
        corrected_category: Optional[str] = None,
        is_correct: Optional[bool] = None,
    ) -> FeedbackOutcome:
        """
        Apply a user's verdict on a classification.

        A correction to a different category feeds the sender reputation at
        feedback weight and updates the message; either way the latest log
        entry for the message gets the feedback fields.
        """
        try:
            message = await self._load_message(message_id)
        except Exception as exc:
            logger.error("Feedback for %s failed to load message: %s", message_id, exc)
            return FeedbackOutcome(success=False, message_id=message_id, error=str(exc))
        if message is None or message.user_id != user_id:
            return FeedbackOutcome(success=False, message_id=message_id, error="message not found")

        previous = message.category
        corrected = Category.from_string(corrected_category).value if corrected_category else None
        changed = corrected is not None and corrected != previous
        if is_correct is None:
            is_correct = not changed

        result = FeedbackOutcome(
            success=True,
            message_id=message_id,
            previous_category=previous,
            category=corrected if changed else previous,
        )

        if changed:
            update = await self.senders.update(user_id, message.from_address, corrected, is_user_feedback=True)
            result.reputation_updated = update.success and not update.skipped
            if not update.success:
                result.success = False
                result.error = update.error
            try:
                await self.db.update_message_fields(message_id, {"category": corrected})
            except Exception as exc:
                logger.error("Failed to store corrected category for %s: %s", message_id, exc)
                result.success = False
                result.error = str(exc)

        feedback = await self.log.record_feedback(
            message_id, user_id, corrected if changed else None, bool(is_correct)
        )
        result.log_updated = feedback.success
        if not feedback.success and feedback.error != NO_LOG_ENTRY:
            result.success = False
            result.error = result.error or feedback.error

        logger.info(
            "Feedback on %s: %s -> %s (correct=%s)",
            message_id,
            previous,
            result.category,
            is_correct,
        )
        return result

    async def report_spam(self, user_id: str, message_id: str) -> FeedbackOutcome:
        """User says the message is spam: correction plus a spam action on the domain."""
        result = await self.record_feedback(user_id, message_id, Category.SPAM.value)
        if result.success:
            await self._domain_action(user_id, message_id, DomainAction.SPAM)
        return result

    async def mark_not_spam(
        self,
        user_id: str,
        message_id: str,
        category: Optional[str] = None,
    ) -> FeedbackOutcome:
        """
        User says the message is legitimate.

        Marks the phishing verdict safe (terminal), records a mark-safe domain
        action and, when a category is given, applies it as a correction.
        """
        try:
            message = await self._load_message(message_id)
        except Exception as exc:
            logger.error("Mark-safe for %s failed to load message: %s", message_id, exc)
            return FeedbackOutcome(success=False, message_id=message_id, error=str(exc))
        if message is None or message.user_id != user_id:
            return FeedbackOutcome(success=False, message_id=message_id, error="message not found")

        review = await self.records.mark_reviewed(message_id, safe=True)
        if not review.success:
            return FeedbackOutcome(success=False, message_id=message_id, error=review.error)

        if category and Category.from_string(category) != Category.SPAM:
            result = await self.record_feedback(user_id, message_id, category)
        else:
            result = await self.record_feedback(user_id, message_id, None, is_correct=False)
        if result.success:
            await self._domain_action(user_id, message_id, DomainAction.MARK_SAFE)
        return result

    async def _domain_action(self, user_id: str, message_id: str, action: DomainAction) -> None:
        try:
            message = await self._load_message(message_id)
        except Exception as exc:
            logger.warning("Domain action %s skipped for %s: %s", action.value, message_id, exc)
            return
        if message is None:
            return
        update = await self.domains.log_action(user_id, message_id, message.from_address, action)
        if not update.success:
            logger.warning("Domain action %s failed for %s: %s", action.value, message_id, update.error)
