"""BNS validation endpoints."""

from typing import Any

from fastapi import APIRouter, Depends

from truthchain.api.v1.dependencies import get_bns_validator, get_scheduler
from truthchain.api.v1.models import ValidateBnsRequest
from truthchain.services.bns import BNSValidator
from truthchain.services.scheduler import BNSValidationScheduler

router = APIRouter(tags=["bns"])


@router.post("/validate-bns")
async def validate_wallet(
    body: ValidateBnsRequest,
    validator: BNSValidator = Depends(get_bns_validator),
) -> dict[str, Any]:
    """Re-check every BNS binding of a wallet now."""
    report = await validator.validate_wallet(body.wallet_address)
    return {
        "success": True,
        "valid": report.total > 0 and report.valid == report.total,
        "message": f"Validated {report.total} registrations",
        "data": report.to_dict(),
    }


@router.get("/validate-bns/{wallet_address}")
async def wallet_bns_status(
    wallet_address: str,
    validator: BNSValidator = Depends(get_bns_validator),
) -> dict[str, Any]:
    records = await validator.status_for_wallet(wallet_address)
    return {
        "success": True,
        "valid": bool(records) and all(r["bnsStatus"] == "valid" for r in records),
        "message": f"Found {len(records)} registrations with BNS names",
        "data": {"walletAddress": wallet_address.upper(), "registrations": records},
    }


@router.post("/validate-bns/sweep")
async def trigger_sweep(
    scheduler: BNSValidationScheduler = Depends(get_scheduler),
) -> dict[str, Any]:
    """Run a staleness sweep and wait for its report."""
    report = await scheduler.trigger()
    return {
        "success": True,
        "message": f"Validated {report.checked} stale registrations",
        "data": report.to_dict(),
    }
