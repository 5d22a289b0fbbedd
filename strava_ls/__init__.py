"""List Strava activities and gear from an incrementally refreshed local cache."""

__version__ = "0.3.0"
