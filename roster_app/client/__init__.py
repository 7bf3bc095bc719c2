"""
HTTP client helpers for driving donor imports from scripts
"""

from .progress_poller import PollingAbandoned, ProgressPoller, ProgressPollerError

__all__ = ["PollingAbandoned", "ProgressPoller", "ProgressPollerError"]
