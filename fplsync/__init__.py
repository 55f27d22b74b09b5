"""fplsync: scheduled refresh and prediction jobs for fantasy football stats."""

__version__ = "0.1.0"
