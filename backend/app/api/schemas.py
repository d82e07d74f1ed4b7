"""
Pydantic schemas for the emergency notification API.

Separated from the route handler so they are reusable across
the codebase (background workers, tests).

Field names follow the mobile client's camelCase wire format.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class EmergencyReportIn(BaseModel):
    """
    One emergency report as sent by the reporting client.

    Only the shape is checked here; category membership and coordinate
    ranges are validated by EmergencyReport.from_mapping so that every
    entry point shares one set of rules.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    emergency_id: Optional[Union[StrictStr, StrictInt]] = Field(
        None, alias="emergencyId", examples=["EMG-2024-0001"],
    )
    type: Optional[str] = Field(
        None, description="fire | medical | police | natural_disaster | "
                          "accident | security | other",
        examples=["fire"],
    )
    latitude: Optional[Union[StrictInt, StrictFloat]] = Field(None, examples=[10.0])
    longitude: Optional[Union[StrictInt, StrictFloat]] = Field(None, examples=[10.0])
    description: Optional[str] = Field(
        None, examples=["Building fire reported"],
    )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "emergencyId": self.emergency_id,
            "type": self.type,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "description": self.description,
        }


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class TokenFailureOut(BaseModel):
    token: str
    error: str


class DispatchOutcomeOut(BaseModel):
    branch: str
    status: str
    targetCount: int
    successCount: int
    failureCount: int
    error: Optional[str] = None
    failures: List[TokenFailureOut] = Field(default_factory=list)


class NotifyResponse(BaseModel):
    """Response for POST /api/v1/emergencies/notify."""
    success: bool = True
    emergencyId: str
    type: str
    status: str = Field(..., description="success | partial | failed")
    notifiedNearbyUsers: int
    usersScanned: int
    topic: DispatchOutcomeOut
    nearby: DispatchOutcomeOut
    timestamp: str


class NotifierConfigOut(BaseModel):
    minRadiusKm: float
    maxRadiusKm: float
    descriptionTruncateLen: int
    truncationPolicy: str
