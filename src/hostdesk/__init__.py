"""HostDesk: property availability, calendar and listing core."""

__version__ = "0.1.0"
