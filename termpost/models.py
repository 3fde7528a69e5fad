"""Data models for requests, collections, environments and history."""

import json
import uuid
from datetime import datetime, timezone
from typing import Annotated, Dict, List, Optional, Tuple, Union, Literal
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


class HTTPMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"

    def next(self) -> "HTTPMethod":
        cycle = EDITABLE_METHODS
        if self not in cycle:
            return cycle[0]
        return cycle[(cycle.index(self) + 1) % len(cycle)]

    def prev(self) -> "HTTPMethod":
        cycle = EDITABLE_METHODS
        if self not in cycle:
            return cycle[-1]
        return cycle[(cycle.index(self) - 1) % len(cycle)]


# Order used when cycling the method from the keyboard
EDITABLE_METHODS = [
    HTTPMethod.GET,
    HTTPMethod.POST,
    HTTPMethod.PUT,
    HTTPMethod.PATCH,
    HTTPMethod.DELETE,
]


class AuthType(str, Enum):
    NONE = "none"
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "api_key"

    @property
    def label(self) -> str:
        return {
            AuthType.NONE: "None",
            AuthType.BEARER: "Bearer Token",
            AuthType.BASIC: "Basic Auth",
            AuthType.API_KEY: "API Key",
        }[self]

    def next(self) -> "AuthType":
        members = list(AuthType)
        return members[(members.index(self) + 1) % len(members)]


class ApiKeyLocation(str, Enum):
    HEADER = "header"
    QUERY = "query"


class KeyValue(BaseModel):
    key: str = ""
    value: str = ""
    enabled: bool = True


class AuthConfig(BaseModel):
    auth_type: AuthType = AuthType.NONE
    bearer_token: str = ""
    basic_username: str = ""
    basic_password: str = ""
    api_key_name: str = ""
    api_key_value: str = ""
    api_key_location: ApiKeyLocation = ApiKeyLocation.HEADER

    @field_validator("api_key_location", mode="before")
    @classmethod
    def _location_defaults_to_header(cls, value):
        # Anything but "query" (including "") is sent as a header
        if isinstance(value, ApiKeyLocation):
            return value
        if value == ApiKeyLocation.QUERY.value:
            return ApiKeyLocation.QUERY
        return ApiKeyLocation.HEADER


def _default_headers() -> List[KeyValue]:
    return [KeyValue(key="Content-Type", value="application/json")]


class ApiRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = "New Request"
    method: HTTPMethod = HTTPMethod.GET
    url: str = ""
    headers: List[KeyValue] = Field(default_factory=_default_headers)
    query_params: List[KeyValue] = Field(default_factory=list)
    body: str = ""
    content_type: Optional[str] = None
    auth: AuthConfig = Field(default_factory=AuthConfig)


# Persisted collection layout: a tree of tagged items

class RequestItem(ApiRequest):
    type: Literal["request"] = "request"


class FolderItem(BaseModel):
    type: Literal["folder"] = "folder"
    id: str = Field(default_factory=new_id)
    name: str
    items: List["CollectionItem"] = Field(default_factory=list)
    expanded: bool = True


CollectionItem = Annotated[Union[RequestItem, FolderItem], Field(discriminator="type")]
FolderItem.model_rebuild()


class CollectionFile(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    items: List[CollectionItem] = Field(default_factory=list)


class Environment(BaseModel):
    name: str
    color: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict)


class EnvironmentSet(BaseModel):
    active_index: Optional[int] = None
    environments: List[Environment] = Field(default_factory=list)

    @classmethod
    def default(cls) -> "EnvironmentSet":
        env = Environment(name="default", variables={"base_url": "http://localhost:3000"})
        return cls(active_index=0, environments=[env])

    def active(self) -> Optional[Environment]:
        if self.active_index is None:
            return None
        if 0 <= self.active_index < len(self.environments):
            return self.environments[self.active_index]
        return None

    def active_name(self) -> str:
        env = self.active()
        return env.name if env else "none"

    def active_variables(self) -> Dict[str, str]:
        env = self.active()
        return dict(env.variables) if env else {}

    def next(self):
        """Advance the active environment, wrapping at the end."""
        if not self.environments:
            return
        current = self.active_index if self.active_index is not None else -1
        self.active_index = (current + 1) % len(self.environments)

    def index_of(self, name: str) -> Optional[int]:
        for i, env in enumerate(self.environments):
            if env.name == name:
                return i
        return None


class HistoryEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    request: ApiRequest
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status_code: Optional[int] = None
    duration_ms: int = 0
    error: Optional[str] = None


class HistoryFile(BaseModel):
    entries: List[HistoryEntry] = Field(default_factory=list)


class Settings(BaseModel):
    theme: str = "Classic"


class ResolvedRequest(BaseModel):
    """A request with every template interpolated and auth merged in."""
    source_id: Optional[str] = None
    method: HTTPMethod
    url: str
    headers: List[Tuple[str, str]] = Field(default_factory=list)
    params: List[Tuple[str, str]] = Field(default_factory=list)
    body: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers:
            if key.lower() == name.lower():
                return value
        return None


class HttpResponse(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    status: int
    status_text: str = ""
    headers: List[Tuple[str, str]] = Field(default_factory=list)
    body: bytes = b""
    elapsed_ms: int = 0

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def size_bytes(self) -> int:
        return len(self.body)

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def content_type(self) -> Optional[str]:
        for key, value in self.headers:
            if key.lower() == "content-type":
                return value.split(";")[0].strip()
        return None

    def pretty_body(self) -> str:
        text = self.text
        try:
            return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
        except ValueError:
            return text
