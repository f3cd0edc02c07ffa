from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TextContent(BaseModel):
    type: str = "text"
    text: str


class ToolCallResponse(BaseModel):
    content: List[TextContent] = Field(default_factory=list)
    isError: bool = False


class ToolAnnotations(BaseModel):
    readOnlyHint: bool = False
    destructiveHint: bool = False
    idempotentHint: bool = False


class ToolModel(BaseModel):
    name: str
    description: str
    inputSchema: Dict[str, Any]
    outputSchema: Optional[Dict[str, Any]] = None
    annotations: ToolAnnotations


class ToolListResponse(BaseModel):
    tools: List[ToolModel] = Field(default_factory=list)


class ResourceModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uri: str
    name: str
    mimeType: str = "application/json"


class ResourceListResponse(BaseModel):
    resources: List[ResourceModel] = Field(default_factory=list)


class ResourceContents(BaseModel):
    uri: str
    mimeType: str = "application/json"
    text: str


class ReadResourceResponse(BaseModel):
    contents: List[ResourceContents] = Field(default_factory=list)


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool = False
    request_id: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: ErrorBody
