from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class PortMappingIn(BaseModel):
    external: int = Field(ge=1, le=65535)
    internal: int = Field(ge=1, le=65535)


class BindMountIn(BaseModel):
    host: str = Field(min_length=1)
    internal: str = Field(min_length=1)


class VariableIn(BaseModel):
    key: str = Field(min_length=1)
    value: str = ""


class NetworkIn(BaseModel):
    name: str = Field(min_length=1)
    external: bool = True


class LabelIn(BaseModel):
    key: str = Field(min_length=1)
    value: str = ""


class AppConfig(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    repository: Optional[str] = Field(default=None, description="source the build service builds from")
    branch: Optional[str] = None
    ports: List[PortMappingIn] = Field(default_factory=list)
    volumes: List[BindMountIn] = Field(default_factory=list)
    variables: List[VariableIn] = Field(default_factory=list)
    networks: List[NetworkIn] = Field(default_factory=list)
    labels: List[LabelIn] = Field(default_factory=list)


class AppOut(BaseModel):
    id: str
    name: str
    repository: Optional[str] = None
    branch: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None
    status: Optional[str] = None


class BuildOut(BaseModel):
    id: str
    appId: str
    image: str
    createdAt: Optional[datetime] = None


class MessageResponse(BaseModel):
    message: str
