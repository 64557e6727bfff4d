"""Verification endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from truthchain.api.v1.dependencies import get_chain_resolver, get_resolver
from truthchain.api.v1.models import BatchVerifyRequest, VerifyRequest
from truthchain.blockchain.gateway import MAX_BATCH_SIZE
from truthchain.core.hashing import normalize_hash_hex
from truthchain.services.resolver import VerificationResolver

router = APIRouter(tags=["verification"])


@router.post("/verify")
async def verify_content(
    body: VerifyRequest,
    resolver: VerificationResolver = Depends(get_resolver),
) -> dict[str, Any]:
    """Verify content or a hash: cache, then store, then chain."""
    if not body.content and not body.hash:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Missing required fields",
                "message": "Either tweet content or hash is required",
            },
        )

    outcome = await resolver.verify(content=body.content, hash_hex=body.hash)
    response: dict[str, Any] = {
        "success": True,
        "verified": outcome.verified,
        "message": outcome.message,
        "source": outcome.source,
        "hash": outcome.hash,
    }
    if outcome.data is not None:
        response["data"] = outcome.data
    return response


@router.post("/verify/batch")
async def verify_batch(
    body: BatchVerifyRequest,
    resolver: VerificationResolver = Depends(get_chain_resolver),
) -> dict[str, Any]:
    """Existence probe for up to ten items against the chain."""
    if not body.items:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Invalid request",
                "message": "Items array is required for batch verification",
            },
        )
    if len(body.items) > MAX_BATCH_SIZE:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "Too many items",
                "message": f"Maximum {MAX_BATCH_SIZE} items allowed per batch request",
            },
        )

    results = await resolver.verify_batch(body.items)
    return {
        "success": True,
        "message": f"Batch verification completed for {len(results)} items",
        "results": [result.to_dict() for result in results],
    }


@router.get("/verify/{content_hash}")
async def quick_verify(
    content_hash: str,
    resolver: VerificationResolver = Depends(get_chain_resolver),
) -> dict[str, Any]:
    """Primary-contract existence check for a hash."""
    normalized = normalize_hash_hex(content_hash)
    exists = await resolver.quick_exists(normalized)
    return {
        "success": True,
        "verified": exists,
        "message": "Content verified" if exists else "Content not found on blockchain",
        "data": {"hash": normalized, "exists": exists},
    }
