"""PayTR callback and token request schemas."""
from typing import Optional, Mapping, Any

from pydantic import BaseModel, Field


class PayTRCallback(BaseModel):
    """Notification fields PayTR posts to the callback URL."""
    merchant_oid: str = Field(..., description="Sanitized order id")
    status: str = Field(..., description="'success' or anything else for failure")
    total_amount: str = Field(..., description="Settled amount in minor units")
    hash: str = Field(..., description="base64 HMAC-SHA256 of oid + salt + status + total_amount")
    failed_reason_code: Optional[str] = None
    failed_reason_msg: Optional[str] = None
    test_mode: Optional[str] = None
    payment_type: Optional[str] = None
    currency: Optional[str] = None
    payment_amount: Optional[str] = None

    @classmethod
    def from_fields(cls, fields: Mapping[str, Any]) -> "PayTRCallback":
        """Build from a form or query mapping, keeping values as strings."""
        data = {
            name: str(fields[name])
            for name in cls.model_fields
            if fields.get(name) is not None
        }
        return cls(**data)

    def provider_details(self) -> dict:
        """Callback fields worth keeping on the payment row (no hash)."""
        return self.model_dump(exclude={"hash"}, exclude_none=True)


class TokenRequest(BaseModel):
    """Optional overrides when (re)requesting an iframe token."""
    email: Optional[str] = None
    merchant_ok_url: Optional[str] = None
    merchant_fail_url: Optional[str] = None
