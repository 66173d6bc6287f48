"""
vehiclelink - MAVLink telemetry link for ground stations.
"""

__version__ = "1.0.0"
