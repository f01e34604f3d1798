"""
Converge - reliability layer for remote resource management.

- converge.core: errors, composite identifiers, settings, logging
- converge.execution: rate limiting, retry polling, pagination, convergence
- converge.container: lazily wired components for one process
"""

__version__ = "0.1.0"

from converge.container import ConvergeContainer, get_container
from converge.core import *  # noqa
from converge.execution import *  # noqa
