"""
In-process cache of resolved query permissions.

Entries are keyed by operation and the sorted, upper-cased role names. Any
write to the catalog or the grant graph made through the engine must call
invalidate(); writes made by other processes are only seen after a restart.
"""
from typing import Dict, Iterable, Optional, Tuple

from app.features.permissions.types import Operation, QueryPermission


CacheKey = Tuple[str, Tuple[str, ...]]


def normalize_roles(roles: Iterable[str]) -> Tuple[str, ...]:
    return tuple(sorted({str(r).strip().upper() for r in roles if str(r).strip()}))


class QueryPermissionCache:
    def __init__(self):
        self.version = 0
        self._entries: Dict[CacheKey, QueryPermission] = {}

    @staticmethod
    def key(operation: Operation, roles: Iterable[str]) -> CacheKey:
        return str(operation), normalize_roles(roles)

    def get(self, operation: Operation, roles: Iterable[str]) -> Optional[QueryPermission]:
        return self._entries.get(self.key(operation, roles))

    def put(self, operation: Operation, roles: Iterable[str], permission: QueryPermission, version: int) -> None:
        # A resolution that started before an invalidation must not repopulate the cache
        if version == self.version:
            self._entries[self.key(operation, roles)] = permission

    def invalidate(self) -> None:
        self.version += 1
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
