"""Pydantic models for request bodies."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Accepts the camelCase field names used by the browser extension."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class VerifyRequest(CamelModel):
    content: Optional[str] = Field(None, alias="tweetContent")
    hash: Optional[str] = None


class BatchVerifyRequest(CamelModel):
    # Validated by the route so oversized batches get a readable 400
    items: Optional[list[Any]] = None


class RegisterRequest(CamelModel):
    content: str = Field(..., alias="tweetContent", min_length=1)
    private_key: str = Field(..., alias="privateKey", min_length=1, repr=False)
    url: Optional[str] = Field(None, alias="tweetUrl")
    twitter_handle: Optional[str] = Field(None, alias="twitterHandle")


class CheckRegistrationRequest(CamelModel):
    content: str = Field(..., alias="tweetContent", min_length=1)


class SecureRegisterRequest(CamelModel):
    content: str = Field(..., alias="tweetContent", min_length=1)
    wallet_address: str = Field(..., alias="walletAddress", min_length=20)
    bns_name: Optional[str] = Field(None, alias="bnsName")
    url: Optional[str] = Field(None, alias="tweetUrl")
    twitter_handle: Optional[str] = Field(None, alias="twitterHandle")
    source: Literal["extension", "web", "mobile", "api"] = "web"


class ConfirmRegistrationRequest(CamelModel):
    tx_id: str = Field(..., alias="txId", min_length=1)
    content: Optional[str] = Field(None, alias="tweetContent")
    hash: Optional[str] = None


class ValidateBnsRequest(CamelModel):
    wallet_address: str = Field(..., alias="walletAddress", min_length=20)
