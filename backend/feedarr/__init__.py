"""
Feedarr - RSS feeds for a media-management API
"""

__version__ = "1.0.0"
