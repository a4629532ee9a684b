"""
Scheduled refresh: query -> serialize + fingerprint -> publish.
"""
from querycache.services.refresh.worker import RefreshWorker, retire_entry

__all__ = ["RefreshWorker", "retire_entry"]
