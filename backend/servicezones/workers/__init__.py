"""Workers exports."""
from servicezones.workers.tasks import (
    celery_app,
    refresh_area_shop_stats,
)

__all__ = [
    "celery_app",
    "refresh_area_shop_stats",
]
