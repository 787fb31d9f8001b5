"""Database schema creation helpers."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class DatabaseSchemaMixin:
    """Database schema creation helpers."""

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        async with self._lock:
            await self._connection.executescript(
                """
                    -- Per (user, sender) category reputation
                    CREATE TABLE IF NOT EXISTS sender_reputation (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        sender_email TEXT NOT NULL,
                        sender_domain TEXT,
                        primary_category TEXT,
                        category_scores TEXT DEFAULT '{}',
                        total_emails INTEGER DEFAULT 0,
                        user_overrides INTEGER DEFAULT 0,
                        confidence REAL DEFAULT 0,
                        version INTEGER DEFAULT 0,
                        last_seen_at TEXT,
                        created_at TEXT,
                        updated_at TEXT,
                        UNIQUE(user_id, sender_email)
                    );

                    -- Per (user, domain) behavioural reputation
                    CREATE TABLE IF NOT EXISTS domain_reputation (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        domain TEXT NOT NULL,
                        reputation_score REAL DEFAULT 50,
                        behavior_score REAL DEFAULT 50,
                        trust_level TEXT DEFAULT 'neutral',
                        total_emails INTEGER DEFAULT 0,
                        opened_count INTEGER DEFAULT 0,
                        replied_count INTEGER DEFAULT 0,
                        archived_count INTEGER DEFAULT 0,
                        deleted_count INTEGER DEFAULT 0,
                        spam_reported_count INTEGER DEFAULT 0,
                        phishing_reported_count INTEGER DEFAULT 0,
                        safe_marked_count INTEGER DEFAULT 0,
                        open_rate REAL DEFAULT 0,
                        reply_rate REAL DEFAULT 0,
                        delete_rate REAL DEFAULT 0,
                        category_distribution TEXT DEFAULT '{}',
                        primary_category TEXT,
                        is_whitelisted INTEGER DEFAULT 0,
                        is_blacklisted INTEGER DEFAULT 0,
                        is_legitimate INTEGER DEFAULT 0,
                        first_seen_at TEXT,
                        last_seen_at TEXT,
                        updated_at TEXT,
                        UNIQUE(user_id, domain)
                    );

                    -- Passive user actions feeding domain reputation
                    CREATE TABLE IF NOT EXISTS email_action_logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        message_id TEXT,
                        sender_domain TEXT NOT NULL,
                        action_type TEXT NOT NULL,
                        created_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS phishing_patterns (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        pattern_type TEXT NOT NULL,
                        pattern_value TEXT NOT NULL,
                        severity INTEGER NOT NULL,
                        description TEXT,
                        is_active INTEGER DEFAULT 1,
                        created_at TEXT,
                        UNIQUE(pattern_type, pattern_value)
                    );

                    CREATE TABLE IF NOT EXISTS phishing_domains (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        domain TEXT UNIQUE NOT NULL,
                        is_blacklisted INTEGER DEFAULT 1,
                        reason TEXT,
                        created_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS legitimate_domains (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        domain TEXT UNIQUE NOT NULL,
                        category TEXT,
                        is_verified INTEGER DEFAULT 1,
                        created_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS messages (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        from_address TEXT,
                        from_name TEXT,
                        subject TEXT,
                        body_text TEXT,
                        body_html TEXT,
                        category TEXT,
                        priority INTEGER DEFAULT 3,
                        is_read INTEGER DEFAULT 0,
                        is_starred INTEGER DEFAULT 0,
                        is_archived INTEGER DEFAULT 0,
                        is_deleted INTEGER DEFAULT 0,
                        received_at TEXT,
                        phishing_score INTEGER,
                        phishing_risk TEXT,
                        phishing_reasons TEXT,
                        is_phishing_reviewed INTEGER DEFAULT 0,
                        is_marked_safe INTEGER DEFAULT 0,
                        classified_at TEXT,
                        created_at TEXT,
                        updated_at TEXT
                    );

                    CREATE TABLE IF NOT EXISTS labels (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        created_at TEXT,
                        UNIQUE(user_id, name)
                    );

                    CREATE TABLE IF NOT EXISTS message_labels (
                        message_id TEXT NOT NULL,
                        label_id INTEGER NOT NULL,
                        created_at TEXT,
                        PRIMARY KEY (message_id, label_id),
                        FOREIGN KEY (label_id) REFERENCES labels(id)
                    );

                    CREATE TABLE IF NOT EXISTS automation_rules (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        description TEXT,
                        is_active INTEGER DEFAULT 1,
                        is_system INTEGER DEFAULT 0,
                        conditions TEXT NOT NULL,
                        actions TEXT NOT NULL,
                        run_frequency TEXT DEFAULT 'manual',
                        total_runs INTEGER DEFAULT 0,
                        total_affected INTEGER DEFAULT 0,
                        last_run_at TEXT,
                        created_at TEXT,
                        updated_at TEXT
                    );

                    -- One immutable row per rule execution
                    CREATE TABLE IF NOT EXISTS automation_logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        rule_id INTEGER NOT NULL,
                        status TEXT DEFAULT 'pending',
                        started_at TEXT,
                        finished_at TEXT,
                        emails_scanned INTEGER DEFAULT 0,
                        emails_affected INTEGER DEFAULT 0,
                        actions_taken TEXT DEFAULT '[]',
                        error_message TEXT,
                        FOREIGN KEY (rule_id) REFERENCES automation_rules(id)
                    );

                    -- Append-only classification decisions
                    CREATE TABLE IF NOT EXISTS classification_logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        message_id TEXT NOT NULL,
                        sender_email TEXT,
                        sender_domain TEXT,
                        subject TEXT,
                        assigned_category TEXT NOT NULL,
                        ai_confidence REAL DEFAULT 0,
                        phishing_score INTEGER DEFAULT 0,
                        classification_source TEXT NOT NULL,
                        used_sender_reputation INTEGER DEFAULT 0,
                        sender_reputation_score REAL,
                        processing_time_ms INTEGER,
                        user_corrected_category TEXT,
                        is_correct INTEGER,
                        feedback_at TEXT,
                        created_at TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS metrics_daily (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        metric_date TEXT NOT NULL,
                        total_classifications INTEGER DEFAULT 0,
                        correct_classifications INTEGER DEFAULT 0,
                        incorrect_classifications INTEGER DEFAULT 0,
                        pending_feedback INTEGER DEFAULT 0,
                        accuracy_rate REAL DEFAULT 0,
                        reputation_hit_count INTEGER DEFAULT 0,
                        reputation_hit_rate REAL DEFAULT 0,
                        phishing_detected INTEGER DEFAULT 0,
                        avg_processing_time_ms REAL DEFAULT 0,
                        avg_confidence REAL DEFAULT 0,
                        low_confidence_count INTEGER DEFAULT 0,
                        category_stats TEXT DEFAULT '{}',
                        source_stats TEXT DEFAULT '{}',
                        updated_at TEXT,
                        UNIQUE(user_id, metric_date)
                    );
                """
            )
            await self._connection.commit()

        await self._create_indexes()

    async def _create_indexes(self) -> None:
        """Create indexes (best-effort, safe for older DBs)."""
        statements = [
            "CREATE INDEX IF NOT EXISTS idx_sender_reputation_user_conf ON sender_reputation(user_id, confidence DESC)",
            "CREATE INDEX IF NOT EXISTS idx_domain_reputation_user_total ON domain_reputation(user_id, total_emails DESC)",
            "CREATE INDEX IF NOT EXISTS idx_action_logs_user_domain ON email_action_logs(user_id, sender_domain)",
            "CREATE INDEX IF NOT EXISTS idx_messages_user_received ON messages(user_id, is_deleted, received_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_rules_user_active ON automation_rules(user_id, is_active)",
            "CREATE INDEX IF NOT EXISTS idx_automation_logs_rule ON automation_logs(rule_id, started_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_classification_logs_user_created ON classification_logs(user_id, created_at)",
            "CREATE INDEX IF NOT EXISTS idx_classification_logs_message ON classification_logs(message_id, user_id)",
            "CREATE INDEX IF NOT EXISTS idx_metrics_daily_date ON metrics_daily(metric_date)",
        ]

        async with self._lock:
            for stmt in statements:
                try:
                    await self._connection.execute(stmt)
                except Exception as exc:
                    logger.debug("Index creation skipped (%s): %s", stmt, exc)
                    continue
            await self._connection.commit()
