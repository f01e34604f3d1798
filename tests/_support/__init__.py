"""
Test support utilities for converge-core tests.

Helpers that are not fixtures but are shared across test modules.
"""

from __future__ import annotations

from typing import Any


def make_items(count: int, prefix: str = "item") -> list[dict[str, Any]]:
    """Build ``count`` list-endpoint rows with stable ids."""
    return [{"Id": f"{prefix}-{i}", "Index": i} for i in range(count)]
