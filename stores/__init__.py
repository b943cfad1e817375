from .tracker_store import StoreError, TrackerStore

__all__ = ["StoreError", "TrackerStore"]
