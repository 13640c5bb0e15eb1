from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator, model_validator


class Connection(BaseModel):
    """A stored binding of an owner to a service type and its credentials."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    service_type: str = Field(alias="serviceType")
    owner_id: str = Field(alias="ownerId")
    # write-only: never part of a dump, a repr or a listing
    credentials: Dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    def info(self) -> "ConnectionInfo":
        return ConnectionInfo(id=self.id, service_type=self.service_type, owner_id=self.owner_id)


class ConnectionInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    service_type: str = Field(alias="serviceType")
    owner_id: str = Field(alias="ownerId")


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str
    input_schema: Dict[str, Any] = Field(alias="inputSchema")


class ResourceDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    locator: str


class AdapterInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    capabilities: List[str]


class MessageType(str, Enum):
    DISCOVER = "discover"
    LIST_RESOURCES = "list_resources"
    READ_RESOURCE = "read_resource"
    LIST_TOOLS = "list_tools"
    CALL_TOOL = "call_tool"

    @property
    def response_type(self) -> str:
        return f"{self.value}_response"


class RequestEnvelope(BaseModel):
    """Inbound protocol message: {type, id, ...type-specific fields}."""

    model_config = ConfigDict(extra="allow")

    type: MessageType
    id: Union[StrictStr, StrictInt]
    resource: Optional[StrictStr] = None
    tool: Optional[StrictStr] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("parameters", mode="before")
    @classmethod
    def _null_parameters(cls, v: Any) -> Any:
        return {} if v is None else v

    @model_validator(mode="after")
    def _check_fields(self) -> "RequestEnvelope":
        if isinstance(self.id, str) and not self.id.strip():
            raise ValueError("id must not be empty")
        if self.type is MessageType.READ_RESOURCE and not self.resource:
            raise ValueError("read_resource requires 'resource'")
        if self.type is MessageType.CALL_TOOL and not self.tool:
            raise ValueError("call_tool requires 'tool'")
        return self


class ContextOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    max_tokens: Optional[int] = Field(default=None, alias="maxTokens", ge=1)
    include_metadata: bool = Field(default=False, alias="includeMetadata")


class ContextSection(BaseModel):
    """One rendered resource of a context bundle."""

    model_config = ConfigDict(populate_by_name=True)

    service_type: str = Field(alias="serviceType")
    resource_name: str = Field(alias="resourceName")
    content: str
    generated_at: str = Field(alias="generatedAt")
    byte_length: int = Field(alias="byteLength")
