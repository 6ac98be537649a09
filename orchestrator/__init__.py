"""Record/replay execution engine for data-driven UI test automation."""

from .config import EngineConfig, load_config
from .errors import (
    CommandResponse,
    EngineError,
    PersistenceFailure,
    StateConflict,
    TransportFailure,
    ValidationFailure,
)
from .injection import InjectionResult, RowInjection, ValueInjector
from .log_collector import LogCollector
from .pause import PauseController
from .retry import ActionResponse, RemoteAction, RetryingActionExecutor
from .run_record import RunRecordBuilder, RunRecordValidationError
from .service import CommandDispatcher, build_dispatcher
from .sessions import RecordingController, ReplayController

__all__ = [
    "ActionResponse",
    "CommandDispatcher",
    "CommandResponse",
    "EngineConfig",
    "EngineError",
    "InjectionResult",
    "LogCollector",
    "PauseController",
    "PersistenceFailure",
    "RecordingController",
    "RemoteAction",
    "ReplayController",
    "RetryingActionExecutor",
    "RowInjection",
    "RunRecordBuilder",
    "RunRecordValidationError",
    "StateConflict",
    "TransportFailure",
    "ValidationFailure",
    "ValueInjector",
    "build_dispatcher",
    "load_config",
]
