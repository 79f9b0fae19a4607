"""Editing module - User-driven changes to the region list."""

from faceredact.editing.manual_zone import (
    compute_manual_zone,
    create_manual_region,
    manual_zone_box,
    region_at,
)

__all__ = [
    "compute_manual_zone",
    "create_manual_region",
    "manual_zone_box",
    "region_at",
]
