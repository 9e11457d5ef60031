"""Catalog services for stores, coupons and cashback offers."""

from .coupons import CouponCatalog, CouponFilters, DeleteOutcome
from .offers import CashbackOfferCatalog, OfferFilters
from .pagination import Page, PageRequest, clamp_limit
from .stores import StoreCatalog, StoreFilters

__all__ = [
    "CashbackOfferCatalog",
    "CouponCatalog",
    "CouponFilters",
    "DeleteOutcome",
    "OfferFilters",
    "Page",
    "PageRequest",
    "StoreCatalog",
    "StoreFilters",
    "clamp_limit",
]
