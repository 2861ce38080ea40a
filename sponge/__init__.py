"""
Sponge

A bounded, selective web crawler that downloads the resources of a site
matching configured media types or file extensions.
"""

__version__ = "1.0.0"
__description__ = "A bounded web crawler for selectively mirroring site resources"
