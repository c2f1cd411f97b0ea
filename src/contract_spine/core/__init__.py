"""Core primitives: errors, results, data model, settings, logging, cache and validation."""

from contract_spine.core.cache import CacheBackend, ContentCache, InMemoryCache
from contract_spine.core.errors import ErrorCategory, ErrorContext, SpineError
from contract_spine.core.logging import LogContext, bind_context, configure_logging, get_logger
from contract_spine.core.result import Err, Ok, Result, partition_results, try_result_async
from contract_spine.core.settings import ContractSpineSettings, get_settings
from contract_spine.core.validation import SchemaValidator, Violation

__all__ = [
    "CacheBackend",
    "ContentCache",
    "InMemoryCache",
    "ErrorCategory",
    "ErrorContext",
    "SpineError",
    "LogContext",
    "bind_context",
    "configure_logging",
    "get_logger",
    "Err",
    "Ok",
    "Result",
    "partition_results",
    "try_result_async",
    "ContractSpineSettings",
    "get_settings",
    "SchemaValidator",
    "Violation",
]
