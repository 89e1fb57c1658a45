"""
Governor - rate limiting, retry, and circuit breaking primitives.

- governor.core: clocks, errors, structured logging, settings
- governor.execution: rate limiters, retry executor, circuit breaker
"""

__version__ = "0.1.0"

from governor.core import *  # noqa
from governor.execution import *  # noqa
