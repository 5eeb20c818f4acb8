"""
Source root for the parcel cache service.

See src.parcelcache for the ATTOM caching and normalization layer.
"""
