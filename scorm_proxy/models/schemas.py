"""
Pydantic models for API payloads and the normalized manifest descriptor.
"""

from typing import Dict, List, Literal, Optional
from datetime import datetime

from pydantic import BaseModel, Field

ScormVersion = Literal["1.2", "2004"]


class ResourceData(BaseModel):
    """A ``<resource>`` entry of a package manifest"""
    identifier: str = Field(..., description="Resource identifier")
    type: str = Field("webcontent", description="Resource type attribute")
    href: Optional[str] = Field(None, description="Entry file relative to the package root")
    scormType: Optional[str] = Field(None, description="adlcp:scormtype value (sco/asset)")


class ItemData(BaseModel):
    """An ``<item>`` of an organization; items nest"""
    identifier: str
    title: str = ""
    resourceId: Optional[str] = Field(None, description="identifierref of the item")
    children: List["ItemData"] = Field(default_factory=list)


class OrganizationData(BaseModel):
    identifier: str
    title: str = ""
    items: List[ItemData] = Field(default_factory=list)


class ManifestData(BaseModel):
    """Normalized course descriptor produced by the manifest parser"""
    title: str
    scormVersion: ScormVersion
    launchPath: str
    identifier: str
    organizations: List[OrganizationData] = Field(default_factory=list)
    resources: List[ResourceData] = Field(default_factory=list)


class ConsumerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    xapiLrsEndpoint: Optional[str] = Field(None, max_length=500)
    xapiLrsKey: Optional[str] = Field(None, max_length=255)
    xapiLrsSecret: Optional[str] = Field(None, max_length=255)


class SettingsUpdate(BaseModel):
    baseUrl: Optional[str] = Field(None, min_length=1, max_length=500)
    xapiEndpoint: Optional[str] = Field(None, max_length=500)
    xapiKey: Optional[str] = Field(None, max_length=255)
    xapiSecret: Optional[str] = Field(None, max_length=255)


class ToolConfiguration(BaseModel):
    """LTI tool configuration descriptor handed to LMS administrators"""
    title: str
    description: str
    launchUrl: str
    icon: str
    customParameters: Dict[str, str]


class CommitResponse(BaseModel):
    success: bool = True
    score: Optional[float] = None
    completionStatus: str
    successStatus: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Current environment")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")
    uptime: Optional[float] = Field(None, description="Uptime in seconds")
