"""
Lookup core package.

Implements the cache-aside read-through lookup: normalize the raw CEP,
read the cache, fall back to the directory provider on a miss or stale
entry, and write the fresh record back on a best-effort basis.

Modules of interest:
- models: PostalRecord, CacheEntry and the store/provider protocols.
- normalize: CEP normalization and canonical formatting.
- service: LookupService, the protocol itself.
"""

from .models import PostalRecord, CacheEntry, CepStore, DirectoryProvider
from .normalize import normalize_cep, format_cep
from .service import LookupService

__all__ = [
    "PostalRecord",
    "CacheEntry",
    "CepStore",
    "DirectoryProvider",
    "normalize_cep",
    "format_cep",
    "LookupService",
]
