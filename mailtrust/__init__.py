"""MailTrust: email trust and classification engine."""

__version__ = "0.1.0"
