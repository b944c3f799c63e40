"""livepoll_core — SDK for live polling events.

Owns every state machine of a live session:

  - ``SubmissionPipeline``: validate, upload, persist and meter answers
  - ``ModerationGate`` / ``RateLimiter``: content review and abuse limits
  - ``PresentationService`` / ``PresentationController``: which question
    is live, and the presenter heartbeat
  - ``live_sync.reduce`` / ``LiveSyncClient``: participant displays
  - ``compute_display`` / ``ResultsService``: aggregation and display gates
  - ``DisplayControlService``: consent-gated display switches, emergency
    stop, manual blocking
  - ``AccountService``: verification codes and account deletion
"""

from livepoll_core.accounts import AccountService
from livepoll_core.aggregation import ResultsService, compute_display, compute_event_summary
from livepoll_core.display_control import DisplayControlService, DisplayGate
from livepoll_core.live_sync import InProcessLiveSource, LiveSyncClient, reduce
from livepoll_core.moderation import ModerationGate
from livepoll_core.presentation import (
    Direction,
    PresentationController,
    PresentationService,
    PresenterView,
)
from livepoll_core.rate_limit import RateLimiter
from livepoll_core.submission import SubmissionOutcome, SubmissionPipeline

__all__ = [
    "AccountService",
    "Direction",
    "DisplayControlService",
    "DisplayGate",
    "InProcessLiveSource",
    "LiveSyncClient",
    "ModerationGate",
    "PresentationController",
    "PresentationService",
    "PresenterView",
    "RateLimiter",
    "ResultsService",
    "SubmissionOutcome",
    "SubmissionPipeline",
    "compute_display",
    "compute_event_summary",
    "reduce",
]
