"""
Dispatch Models
Provider-agnostic request/response for placing an outbound call
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class DispatchRequest(BaseModel):
    """Everything a dispatcher needs to place one call"""
    to_number: str
    customer_name: str
    assistant_id: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)

    # Correlation metadata echoed back on every webhook for this call
    internal_call_id: str
    organization_id: str
    campaign_id: str
    campaign_type: Optional[str] = None

    def correlation_metadata(self) -> Dict[str, Any]:
        metadata = {
            "internalCallId": self.internal_call_id,
            "organizationId": self.organization_id,
            "campaignId": self.campaign_id,
        }
        if self.campaign_type:
            metadata["campaignType"] = self.campaign_type
        return metadata


class DispatchResult(BaseModel):
    """Provider acknowledgement of a dispatched call"""
    provider_call_id: str
    provider: str
