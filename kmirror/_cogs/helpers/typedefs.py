"""
Rudimentary type [re-]definitions for cross-versioned Python & mypy.

Some stdlib classes are generic only in the type stubs, not at runtime
(e.g. ``logging.LoggerAdapter``), so they are aliased here for both.
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# Anything that can be logged to: either a plain logger, or a per-object adapter.
Logger = Union[logging.Logger, LoggerAdapter]
