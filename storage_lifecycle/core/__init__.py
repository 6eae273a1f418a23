"""
Core infrastructure: settings, logging, backend clients and URL caches.
"""
