"""Property discovery domain exports."""

from .cache import CacheKind, ResultCache, TTLPolicy
from .catalog import CatalogStore, PostgresCatalogStore
from .memory import MemoryCatalogStore
from .service import PropertyDiscoveryService

__all__ = [
	"CacheKind",
	"CatalogStore",
	"MemoryCatalogStore",
	"PostgresCatalogStore",
	"PropertyDiscoveryService",
	"ResultCache",
	"TTLPolicy",
]
