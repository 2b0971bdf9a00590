"""Polling client for the Sarana Care API."""

from .api_client import SaranaClient, SaranaClientError, TransitionError
from .poller import NotificationPoller

__all__ = [
    "SaranaClient",
    "SaranaClientError",
    "TransitionError",
    "NotificationPoller",
]
