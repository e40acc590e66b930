"""
Pydantic models for push events (webhook, unlock confirmation, cron)
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class WebhookLabels(BaseModel):
    contract_address: Optional[str] = None
    event_name: Optional[str] = None

    model_config = {"extra": "allow"}


class WebhookPayload(BaseModel):
    """Onchain activity webhook body"""
    eventTypes: List[str] = []
    labels: WebhookLabels = WebhookLabels()
    data: Dict[str, Any] = {}

    model_config = {"extra": "allow"}


class WebhookAck(BaseModel):
    received: bool = True
    event_type: Optional[str] = None
    queued: bool = False
    ignored: bool = False


class UnlockRequest(BaseModel):
    """Client-side unlock confirmation"""
    castHash: Optional[str] = None
    lockUpId: int = Field(..., ge=0)
    stakeType: Optional[str] = None  # 'caster' | 'supporter', informational


class UnlockResponse(BaseModel):
    success: bool
    lockup_id: int
    cast_hash: Optional[str] = None
