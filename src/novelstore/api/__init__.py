"""FastAPI application exposing the novel store over HTTP."""

from .app import create_app
from .settings import NovelStoreSettings, build_store

__all__ = ["create_app", "NovelStoreSettings", "build_store"]
