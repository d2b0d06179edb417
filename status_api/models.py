"""
Pydantic models for API responses.
"""
from pydantic import BaseModel, Field
from typing import Optional, List


class Condition(BaseModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    lastTransitionTime: Optional[str] = None


class ResourceStatus(BaseModel):
    """Observed state of one managed resource."""
    name: str
    namespace: str
    kind: str
    exists: bool
    desired: int = 0
    ready: int = 0
    unavailable: int = 0


class ResourceListResponse(BaseModel):
    resources: List[ResourceStatus]
    total: int


class ContainerState(BaseModel):
    name: str
    ready: bool = False
    restartCount: int = 0
    waitingReason: Optional[str] = None


class PodStatus(BaseModel):
    name: str
    namespace: str
    node: Optional[str] = None
    phase: Optional[str] = None
    containers: List[ContainerState] = []


class PodListResponse(BaseModel):
    resource: str
    pods: List[PodStatus]
    total: int


class OperatorStatusResponse(BaseModel):
    name: str
    conditions: List[Condition] = []


class EventEntry(BaseModel):
    id: str
    type: str = ""
    resource: str = ""
    message: str = ""
    timestamp: str = ""


class EventListResponse(BaseModel):
    events: List[EventEntry]
    count: int = Field(..., description="Number of events returned")


class ErrorResponse(BaseModel):
    detail: str
    code: str = "UNKNOWN_ERROR"
