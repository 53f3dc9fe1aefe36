"""
Search relay: thin HTTP backend forwarding chat and social search requests.

Endpoints:
- POST /api/chat     streams chat completions as NDJSON
- POST /api/twitter  recent tweet search with authors attached
- POST /api/apify    tweet scraping through an Apify actor
"""

__version__ = "0.1.0"
