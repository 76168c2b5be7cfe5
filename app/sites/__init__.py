"""Site records for SimplHost."""

from .models import Site
from .registry import SiteRegistry

__all__ = ["Site", "SiteRegistry"]
