"""Exceptions raised inside MailTrust and converted to typed results at the public seams."""


class MailTrustError(Exception):
    """Base class for MailTrust errors."""


class ReputationConflictError(MailTrustError):
    """A reputation upsert lost every compare-and-swap attempt."""


class OracleError(MailTrustError):
    """The classification oracle failed or returned an unusable reply."""
