"""Multi-channel listing controller."""

from hostdesk.modules.listing.controller import ListingConfig, ListingController, ListingState

__all__ = ["ListingConfig", "ListingController", "ListingState"]
