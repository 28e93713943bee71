"""Read-only query selectors."""

from workflow_kernel.selectors.base import BaseSelector
from workflow_kernel.selectors.request_selector import (
    RequestAnalytics,
    RequestSelector,
    SLAWarning,
)

__all__ = [
    "BaseSelector",
    "RequestSelector",
    "RequestAnalytics",
    "SLAWarning",
]
