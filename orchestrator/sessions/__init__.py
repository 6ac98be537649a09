from .base import SessionController
from .recording import RecordingController
from .replay import ReplayController, ReplayPlan, summarize

__all__ = ["RecordingController", "ReplayController", "ReplayPlan", "SessionController", "summarize"]
