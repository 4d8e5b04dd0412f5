"""
Shared dependencies and process-wide state for the API.

The job tracker, target store and file source are created lazily on first
use and reused by every request. Routers receive them through FastAPI
dependencies so tests can override them.
"""
import threading
from typing import Optional

from backoffice.core.config import settings
from backoffice.db.store import SqlTargetStore
from backoffice.domain.imports.jobs import ImportJobTracker
from backoffice.domain.pricing.quotes import PriceQuoteService
from backoffice.integrations.storage import get_file_source

_state_lock = threading.Lock()
_store: Optional[SqlTargetStore] = None
_file_source = None
_tracker: Optional[ImportJobTracker] = None


def get_store() -> SqlTargetStore:
    global _store
    with _state_lock:
        if _store is None:
            _store = SqlTargetStore()
        return _store


def get_source():
    global _file_source
    with _state_lock:
        if _file_source is None:
            _file_source = get_file_source()
        return _file_source


def get_tracker() -> ImportJobTracker:
    global _tracker
    store = get_store()
    source = get_source()
    with _state_lock:
        if _tracker is None:
            _tracker = ImportJobTracker(
                store,
                source,
                max_workers=settings.import_max_workers,
                progress_every=settings.import_progress_every_rows,
                queue_size=settings.progress_queue_size,
                header_scan_rows=settings.import_header_scan_rows,
                chunk_size=settings.import_chunk_size or None,
            )
        return _tracker


def get_quote_service() -> PriceQuoteService:
    return PriceQuoteService(get_store())


def shutdown_tracker() -> None:
    """Stop accepting work and wait for running imports to finish."""
    global _tracker
    with _state_lock:
        tracker, _tracker = _tracker, None
    if tracker is not None:
        tracker.shutdown(wait=True)
