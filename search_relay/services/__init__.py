"""Relays for the three upstream APIs."""

from .apify import ApifySearchService
from .chat import ChatService
from .twitter import TwitterSearchService

__all__ = ["ApifySearchService", "ChatService", "TwitterSearchService"]
