"""
Parcel Cache - Core Package

Caching and normalization layer in front of the ATTOM property data API:
viewport tiling, a two-tier cache, request coalescing and defensive
normalization of upstream property records.
"""

__version__ = "0.1.0"
