"""State layer.

This package is the single source of truth for per-vehicle state and for the
transitions (geofence entry/exit, trip start/stop) derived from the ordered
event sequence of each vehicle.
"""
