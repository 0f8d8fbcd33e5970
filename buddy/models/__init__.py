"""Runtime data models and collaborator contracts for the subscriber scheduler."""

from .digest import Digest
from .protocols import DeliveryReport
from .subscriber import MessagingPreference, Subscriber

__all__ = ["Digest", "DeliveryReport", "MessagingPreference", "Subscriber"]
