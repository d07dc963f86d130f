"""
Service layer for the League Discord Bot.

Services share session management through BaseService and cover the
cross-cutting concerns the operations classes lean on: audit trail,
expiring confirmations, profile encryption, standings and message delivery.
"""

from .base import BaseService
from .audit import AuditService
from .confirmation_store import ConfirmationStore
from .standings import StandingsService

__all__ = [
    'BaseService',
    'AuditService',
    'ConfirmationStore',
    'StandingsService',
]
