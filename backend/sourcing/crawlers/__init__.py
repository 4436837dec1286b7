"""Fetchers for static and JavaScript-rendered pages."""

from .static import StaticCrawler
from .headless import HeadlessRenderer

__all__ = ['StaticCrawler', 'HeadlessRenderer']
