"""persuader: schema-validated output from LLMs, with feedback-driven retries."""
from __future__ import annotations

from persuader.config import (
    InitSessionOptions,
    Options,
    PreloadOptions,
    ProcessedConfiguration,
    ProviderOptions,
    process_configuration,
    validate_options,
)
from persuader.engine import AttemptRecord, ExecutionEngine, ExecutionResult
from persuader.errors import (
    ConfigurationError,
    FailureMode,
    PersuaderError,
    ProviderAuthError,
    ProviderCallError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RetryStrategy,
    SchemaIssue,
    SessionInitError,
    StructuredFeedback,
    ValidationError,
)
from persuader.logs import configure_logging, get_logger
from persuader.pipeline import run, run_sync
from persuader.preloading import InitSessionResult, PreloadResult, init_session, preload
from persuader.provider import (
    PromptOptions,
    ProviderAdapter,
    ProviderResponse,
    SessionOptions,
    TokenUsage,
)
from persuader.result import ExecutionMetadata, Result, format_result_metadata, get_execution_stats
from persuader.schema import PydanticSchema, Schema, SchemaResult, as_schema
from persuader.session import (
    SessionCoordinator,
    SessionMetrics,
    SessionRegistry,
    coordinate_session,
    validate_session_state,
)
from persuader.validation import ValidationResult, validate_json

__version__ = "0.1.0"

__all__ = [
    # Entry point
    "run",
    "run_sync",
    "Result",
    "ExecutionMetadata",
    "get_execution_stats",
    "format_result_metadata",
    # Session preparation
    "init_session",
    "preload",
    "InitSessionOptions",
    "InitSessionResult",
    "PreloadOptions",
    "PreloadResult",
    # Configuration
    "Options",
    "ProcessedConfiguration",
    "ProviderOptions",
    "process_configuration",
    "validate_options",
    # Providers
    "ProviderAdapter",
    "ProviderResponse",
    "PromptOptions",
    "SessionOptions",
    "TokenUsage",
    # Sessions
    "SessionCoordinator",
    "SessionMetrics",
    "SessionRegistry",
    "coordinate_session",
    "validate_session_state",
    # Execution
    "ExecutionEngine",
    "ExecutionResult",
    "AttemptRecord",
    # Validation
    "Schema",
    "SchemaResult",
    "PydanticSchema",
    "as_schema",
    "validate_json",
    "ValidationResult",
    # Errors
    "PersuaderError",
    "ConfigurationError",
    "SessionInitError",
    "ProviderCallError",
    "ProviderAuthError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
    "ValidationError",
    "ProviderError",
    "SchemaIssue",
    "StructuredFeedback",
    "FailureMode",
    "RetryStrategy",
    # Logging
    "configure_logging",
    "get_logger",
]
