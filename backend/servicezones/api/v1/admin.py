"""Admin task API endpoints."""
import hmac
import ipaddress
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from redis.exceptions import RedisError

from servicezones.config import Settings, get_settings
from servicezones.services.aggregation import AggregateRefresher, get_refresher
from servicezones.utils.audit import log_audit_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def normalize_ip(value: Optional[str]) -> Optional[str]:
    """Canonical form of an IP address; IPv4-mapped IPv6 becomes plain IPv4."""
    if not value:
        return None
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return str(address)


def allowed_ips(settings: Settings) -> set[str]:
    entries = (normalize_ip(item) for item in settings.ALLOWED_ADMIN_TRIGGER_IPS.split(","))
    return {entry for entry in entries if entry}


async def verify_admin_trigger(
    request: Request,
    x_admin_trigger_key: Optional[str] = Header(default=None, alias="X-Admin-Trigger-Key"),
    settings: Settings = Depends(get_settings),
) -> str:
    """Check the trigger key and caller IP; returns the normalized caller IP."""
    client_ip = normalize_ip(request.client.host if request.client else None) or "unknown"

    if not settings.ADMIN_TRIGGER_KEY:
        logger.error("Admin trigger called but ADMIN_TRIGGER_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error_code": "ADMIN_TRIGGER_NOT_CONFIGURED", "message": "Admin trigger is not configured"},
        )
    if not x_admin_trigger_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error_code": "ADMIN_KEY_MISSING", "message": "X-Admin-Trigger-Key header is required"},
        )
    if not hmac.compare_digest(x_admin_trigger_key, settings.ADMIN_TRIGGER_KEY):
        log_audit_event("admin.trigger_rejected", actor=client_ip, details={"reason": "invalid key"})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error_code": "ADMIN_KEY_INVALID", "message": "Invalid admin trigger key"},
        )

    allowed = allowed_ips(settings)
    if allowed and client_ip not in allowed:
        log_audit_event("admin.trigger_rejected", actor=client_ip, details={"reason": "ip not allowed"})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error_code": "ADMIN_IP_FORBIDDEN", "message": "Caller IP is not allowed"},
        )
    return client_ip


@router.post("/tasks/aggregate-shop-counts", status_code=status.HTTP_202_ACCEPTED)
async def trigger_shop_count_aggregation(
    client_ip: str = Depends(verify_admin_trigger),
    refresher: AggregateRefresher = Depends(get_refresher),
):
    """
    Start a shop count aggregation run in the background.

    Returns 409 when a run is already in progress here or in another worker.
    """
    try:
        started = await refresher.try_trigger("admin")
    except RedisError as exc:
        logger.error("Aggregation lock unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error_code": "AGGREGATION_LOCK_UNAVAILABLE",
                "message": "Shop count aggregation cannot be coordinated right now.",
            },
        )
    log_audit_event("admin.aggregate_shop_counts", actor=client_ip, details={"started": started})
    if not started:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "error_code": "AGGREGATION_IN_PROGRESS",
                "message": "Shop count aggregation is already running.",
            },
        )
    return {"message": "Shop count aggregation process initiated."}
