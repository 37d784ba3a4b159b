"""Application bootstrap helpers for the Spaced Review Scheduler."""

from .runtime import bootstrap, build_review_service, build_store
from .settings import AppSettings

__all__ = ["bootstrap", "build_review_service", "build_store", "AppSettings"]
