from .logger import setup_logging, get_logger, api_logger, rpc_logger, pipeline_logger
from .retry import (
    FailureClass,
    RetryAction,
    RetryConfig,
    RetryDecision,
    backoff_delay,
    calculate_delay,
    plan_retry,
)
from .rate_limiter import RateLimiter, RateLimitConfig, endpoint_for_url
from .validation import (
    BatchValidationError,
    validate_rpc_url,
    validate_transaction_cap,
    validate_wallet_batch,
)

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "api_logger",
    "rpc_logger",
    "pipeline_logger",

    # Retry
    "FailureClass",
    "RetryAction",
    "RetryConfig",
    "RetryDecision",
    "backoff_delay",
    "calculate_delay",
    "plan_retry",

    # Rate Limiter
    "RateLimiter",
    "RateLimitConfig",
    "endpoint_for_url",

    # Validation
    "BatchValidationError",
    "validate_rpc_url",
    "validate_transaction_cap",
    "validate_wallet_batch",
]
