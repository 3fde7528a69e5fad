"""Session state owned and mutated by the orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from .models import ApiRequest, EnvironmentSet, HistoryEntry, HttpResponse
from .tree import CollectionTree, Node


class FocusedPanel(str, Enum):
    REQUEST_LIST = "request_list"
    URL_BAR = "url_bar"
    REQUEST_EDITOR = "request_editor"
    RESPONSE_VIEW = "response_view"

    def next(self) -> "FocusedPanel":
        order = list(FocusedPanel)
        return order[(order.index(self) + 1) % len(order)]

    def prev(self) -> "FocusedPanel":
        order = list(FocusedPanel)
        return order[(order.index(self) - 1) % len(order)]


class InputMode(str, Enum):
    NORMAL = "normal"
    EDITING = "editing"


class EditingField(str, Enum):
    URL = "url"
    BODY = "body"
    HEADER_KEY = "header_key"
    HEADER_VALUE = "header_value"
    PARAM_KEY = "param_key"
    PARAM_VALUE = "param_value"
    BEARER_TOKEN = "bearer_token"
    BASIC_USERNAME = "basic_username"
    BASIC_PASSWORD = "basic_password"
    API_KEY_NAME = "api_key_name"
    API_KEY_VALUE = "api_key_value"

    @property
    def is_indexed(self) -> bool:
        return self in (
            EditingField.HEADER_KEY,
            EditingField.HEADER_VALUE,
            EditingField.PARAM_KEY,
            EditingField.PARAM_VALUE,
        )


class RequestTab(str, Enum):
    HEADERS = "Headers"
    BODY = "Body"
    AUTH = "Auth"
    PARAMS = "Params"

    def next(self) -> "RequestTab":
        order = list(RequestTab)
        return order[(order.index(self) + 1) % len(order)]

    def prev(self) -> "RequestTab":
        order = list(RequestTab)
        return order[(order.index(self) - 1) % len(order)]


class ResponseMode(str, Enum):
    NORMAL = "normal"
    SEARCH = "search"
    FILTER = "filter"


class DialogType(str, Enum):
    CREATE_COLLECTION = "create_collection"
    CREATE_FOLDER = "create_folder"
    CREATE_REQUEST = "create_request"
    RENAME = "rename"
    CONFIRM_DELETE = "confirm_delete"
    CONFIRM_DELETE_COLLECTION = "confirm_delete_collection"

    @property
    def is_confirmation(self) -> bool:
        return self in (DialogType.CONFIRM_DELETE, DialogType.CONFIRM_DELETE_COLLECTION)

    @property
    def title(self) -> str:
        return {
            DialogType.CREATE_COLLECTION: "New Collection",
            DialogType.CREATE_FOLDER: "New Folder",
            DialogType.CREATE_REQUEST: "New Request",
            DialogType.RENAME: "Rename",
            DialogType.CONFIRM_DELETE: "Delete Item",
            DialogType.CONFIRM_DELETE_COLLECTION: "Delete Collection",
        }[self]


@dataclass
class DialogState:
    dialog_type: DialogType
    collection_id: Optional[str] = None
    node_id: Optional[str] = None
    parent_id: Optional[str] = None
    input: str = ""
    prompt: str = ""


@dataclass
class PendingMove:
    collection_id: str
    node_id: str
    name: str


@dataclass
class PendingRequest:
    request_id: Optional[str]
    handle: Any
    started_at: float
    request_snapshot: ApiRequest


@dataclass
class ListRow:
    """One visible row of the request list: a collection header or a node."""
    collection: CollectionTree
    node: Optional[Node] = None
    depth: int = 0

    @property
    def is_header(self) -> bool:
        return self.node is None

    @property
    def is_folder(self) -> bool:
        return self.node is not None and self.node.is_folder

    @property
    def is_request(self) -> bool:
        return self.node is not None and not self.node.is_folder


@dataclass
class SessionState:
    # Focus and mode
    focused_panel: FocusedPanel = FocusedPanel.REQUEST_LIST
    input_mode: InputMode = InputMode.NORMAL
    editing_field: Optional[EditingField] = None
    editing_index: int = 0
    cursor: int = 0
    edit_snapshot: Optional[str] = None
    request_tab: RequestTab = RequestTab.HEADERS

    # Data loaded from the store
    collections: List[CollectionTree] = field(default_factory=list)
    environments: EnvironmentSet = field(default_factory=EnvironmentSet)
    history: List[HistoryEntry] = field(default_factory=list)
    theme: str = "Classic"

    # Request list / history selection
    selected_row: int = 0
    show_history: bool = False
    selected_history: int = 0

    # Request being edited
    current_request: ApiRequest = field(default_factory=ApiRequest)
    source_collection_id: Optional[str] = None
    source_request_id: Optional[str] = None
    selected_header: int = 0
    selected_param: int = 0
    body_scroll: int = 0

    # In-flight slot and last outcome
    pending: Optional[PendingRequest] = None
    response: Optional[HttpResponse] = None
    response_error: Optional[str] = None
    response_scroll: int = 0

    # Response view modes
    response_mode: ResponseMode = ResponseMode.NORMAL
    filter_input: str = ""
    filter_query: Optional[str] = None
    filter_result: Optional[str] = None
    filter_error: Optional[str] = None
    filter_history: List[str] = field(default_factory=list)
    filter_history_index: Optional[int] = None
    search_input: str = ""
    search_query: Optional[str] = None
    search_matches: List[int] = field(default_factory=list)
    search_index: int = 0

    # Messages and overlays
    status_message: Optional[str] = None
    error_message: Optional[str] = None
    show_help: bool = False
    dialog: Optional[DialogState] = None
    pending_move: Optional[PendingMove] = None
    should_quit: bool = False

    @property
    def is_loading(self) -> bool:
        return self.pending is not None

    def visible_rows(self) -> List[ListRow]:
        rows = []
        for collection in self.collections:
            rows.append(ListRow(collection))
            if collection.expanded:
                rows.extend(ListRow(collection, node, depth) for depth, node in collection.flatten())
        return rows

    def selected_list_row(self) -> Optional[ListRow]:
        rows = self.visible_rows()
        if not rows:
            return None
        return rows[min(self.selected_row, len(rows) - 1)]

    def response_text(self) -> str:
        """Text the response view shows: the filter result when one is applied."""
        if self.filter_result is not None:
            return self.filter_result
        if self.response is None:
            return ""
        return self.response.pretty_body()
