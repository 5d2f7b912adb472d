"""nexus-listener: Nexus webhook receiver and artifact fetcher."""
__version__ = "0.1.0"
