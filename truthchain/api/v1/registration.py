"""Registration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from truthchain.api.v1.dependencies import get_registration_service
from truthchain.api.v1.models import (
    CheckRegistrationRequest,
    ConfirmRegistrationRequest,
    RegisterRequest,
    SecureRegisterRequest,
)
from truthchain.core.hashing import normalize_hash_hex
from truthchain.services.registration import RegistrationService

router = APIRouter(tags=["registration"])


@router.post("/register")
async def register_content(
    body: RegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    """Register content with a server-signed transaction."""
    result = await service.register_direct(body.content, body.private_key)
    return {
        "success": True,
        "message": "Content registration submitted",
        "data": {**result, "tweetUrl": body.url, "twitterHandle": body.twitter_handle},
    }


@router.post("/check-registration")
async def check_registration(
    body: CheckRegistrationRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    result = await service.check_registration(body.content)
    return {
        "success": True,
        "exists": result["exists"],
        "message": (
            "Content already registered" if result["exists"] else "Content can be registered"
        ),
        "data": result,
    }


@router.get("/registration/{tx_id}")
async def get_registration(
    tx_id: str,
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    return {
        "success": True,
        "message": "Registration found",
        "data": await service.get_by_tx_id(tx_id),
    }


@router.post("/secure/register")
async def prepare_registration(
    body: SecureRegisterRequest,
    request: Request,
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    """Record a pending registration and return the contract call to sign."""
    result = await service.prepare_registration(
        body.content,
        body.wallet_address,
        bns_name=body.bns_name,
        url=body.url,
        twitter_handle=body.twitter_handle,
        source=body.source,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )
    return {
        "success": True,
        "message": "Registration prepared, sign the contract call to complete it",
        "data": result,
    }


@router.post("/secure/confirm-registration")
async def confirm_registration(
    body: ConfirmRegistrationRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    result = await service.confirm_registration(
        body.tx_id, content=body.content, hash_hex=body.hash
    )
    messages = {
        "confirmed": "Registration confirmed on blockchain",
        "failed": "Registration transaction failed",
        "pending": "Registration is pending confirmation",
    }
    return {
        "success": result["status"] != "failed",
        "confirmed": result["status"] == "confirmed",
        "message": messages[result["status"]],
        "data": result,
    }


@router.get("/content/{content_hash}")
async def get_content(
    content_hash: str,
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    """Stored content of a registration, read from IPFS."""
    result = await service.retrieve_content(normalize_hash_hex(content_hash))
    return {"success": True, "message": "Content retrieved", "data": result}


@router.get("/registrations/wallet/{wallet_address}")
async def list_wallet_registrations(
    wallet_address: str,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    result = await service.list_for_wallet(wallet_address, skip=skip, limit=limit)
    return {
        "success": True,
        "message": f"Found {result['total']} registrations",
        "data": result,
    }


@router.get("/stats/global")
async def global_stats(
    service: RegistrationService = Depends(get_registration_service),
) -> dict[str, Any]:
    return {
        "success": True,
        "message": "Global statistics",
        "data": await service.global_stats(),
    }
