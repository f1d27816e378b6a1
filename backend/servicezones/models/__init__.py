"""Model exports."""
from servicezones.models.boundary import AdministrativeBoundary, AdminAreaShopStats
from servicezones.models.operational_area import OperationalArea
from servicezones.models.shop import Shop

__all__ = [
    "AdministrativeBoundary",
    "AdminAreaShopStats",
    "OperationalArea",
    "Shop",
]
