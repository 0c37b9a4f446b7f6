"""Response cache and hourly history ledger.

The proxy's response cache and the ledger's series store are separate
CacheStore instances: history series never compete with proxied responses
for capacity.
"""
from apibox.core.cache.history import HistoryLedger
from apibox.core.cache.store import CacheStore

__all__ = ["CacheStore", "HistoryLedger"]
