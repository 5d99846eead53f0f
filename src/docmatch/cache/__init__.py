"""
Result caching.

In-memory TTL cache for rankings and combinations, plus wrappers that keep
it consistent with attachment changes.
"""

from .cached import CachedAttachmentService, CachedMatchingEngine
from .result_cache import ResultCache

__all__ = [
    "CachedAttachmentService",
    "CachedMatchingEngine",
    "ResultCache",
]
