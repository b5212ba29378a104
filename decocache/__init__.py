"""
Deco Cache - tiered data cache and fetch coordinator for content browsing.
"""
__version__ = "0.3.0"
