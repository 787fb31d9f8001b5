"""Storage modules for MailTrust."""

from .database import Database

__all__ = ["Database"]
