from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any, Dict

# Event codes the polling endpoint can be filtered on
CODE_READY_TO_PICKUP = "RTP"
CODE_DISPATCHED = "DSP"

FULL_CODE_READY_TO_PICKUP = "READY_TO_PICKUP"
FULL_CODE_DISPATCHED = "DISPATCHED"


class PartnerEvent(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(..., description="Marketplace event id (idempotency key)")
    order_id: str = Field(..., alias="orderId")
    code: Optional[str] = Field(None, description="Short code, e.g. RTP")
    full_code: Optional[str] = Field(None, alias="fullCode", description="e.g. READY_TO_PICKUP")
    merchant_id: Optional[str] = Field(None, alias="merchantId")
    created_at: Optional[str] = Field(None, alias="createdAt")
    metadata: Optional[Dict[str, Any]] = None


class AuthResponse(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    expires_in: int = Field(..., alias="expiresIn", description="Seconds")
    type: Optional[str] = None
