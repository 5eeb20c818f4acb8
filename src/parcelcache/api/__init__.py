"""
FastAPI REST API for the parcel cache

Provides REST endpoints for the browser front end to access:
- Map parcels for a viewport (tiled and cached)
- Address and map-click resolution to a parcel
- Full property snapshots (stale-while-revalidate)
- Health checks
"""
