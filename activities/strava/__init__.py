"""Strava access for the activities mirror.

Modules:
    api     — API v3 client; refresh-token credential strategy
    session — emulated web session; form login and original-file export
"""

from activities.strava.api import StravaClient, StravaToken
from activities.strava.session import OriginalExport, StravaSession

__all__ = [
    "StravaClient",
    "StravaToken",
    "StravaSession",
    "OriginalExport",
]
