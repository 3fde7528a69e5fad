"""Session orchestrator.

Owns the :class:`~termpost.state.SessionState`, interprets key and mouse
events against the focused panel and input mode, and drives the single
in-flight request. Network results only enter the state through
:meth:`Orchestrator.tick`.
"""

import json
import time
from typing import Callable, Dict, Optional

import structlog

from . import filters
from .dispatcher import DispatchOutcome
from .errors import FilterError, ParseError, StoreError, TermpostError, ValidationError
from .events import (
    BACKSPACE,
    CTRL_C,
    CTRL_S,
    DELETE,
    DOWN,
    END,
    ENTER,
    ESCAPE,
    HOME,
    LEFT,
    RIGHT,
    SHIFT_TAB,
    SPACE,
    TAB,
    UNCHANGED,
    UP,
    KeyEvent,
    MouseEvent,
    MouseKind,
    StateDelta,
)
from .exporter import copy_to_clipboard, request_to_curl
from .interpolation import unresolved_variables
from .models import ApiKeyLocation, ApiRequest, AuthType, EnvironmentSet, HistoryEntry, KeyValue, Settings, new_id
from .resolver import resolve_request
from .state import (
    DialogState,
    DialogType,
    EditingField,
    FocusedPanel,
    InputMode,
    ListRow,
    PendingMove,
    PendingRequest,
    RequestTab,
    ResponseMode,
    SessionState,
)
from .themes import next_theme

logger = structlog.get_logger("termpost.orchestrator")

SCROLL_STEP = 3
FILTER_HISTORY_LIMIT = 20

Handler = Callable[[], Optional[StateDelta]]


class Orchestrator:
    def __init__(
        self,
        store,
        dispatcher,
        clipboard: Callable[[str], None] = copy_to_clipboard,
        filter_text: Callable[[str, str], str] = filters.apply_to_text,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clipboard = clipboard
        self.filter_text = filter_text
        self.clock = clock
        self.state = SessionState()

        self._global_keys: Dict[str, Handler] = {
            TAB: self.focus_next,
            SHIFT_TAB: self.focus_prev,
            "1": lambda: self.focus(FocusedPanel.REQUEST_LIST),
            "2": lambda: self.focus(FocusedPanel.URL_BAR),
            "3": lambda: self.focus(FocusedPanel.REQUEST_EDITOR),
            "4": lambda: self.focus(FocusedPanel.RESPONSE_VIEW),
            "q": self.quit,
            CTRL_C: self.quit,
            "?": self.show_help,
            "s": self.send,
            "e": self.cycle_environment,
            "E": self.reload_environments,
            "n": self.new_request,
            "W": self.save_current_request,
            CTRL_S: self.save_current_request,
            "H": self.toggle_history,
            "T": self.cycle_theme,
            "y": self.copy_as_curl,
        }
        self._panel_keys: Dict[FocusedPanel, Dict[str, Handler]] = {
            FocusedPanel.REQUEST_LIST: {
                "j": self._list_down,
                DOWN: self._list_down,
                "k": self._list_up,
                UP: self._list_up,
                ENTER: self._list_enter,
                SPACE: self.toggle_expanded,
                "C": self._start_create_collection,
                "F": self._start_create_folder,
                "r": self._start_create_request,
                "R": self._start_rename,
                "d": self._start_delete,
                DELETE: self._start_delete,
                "D": self._start_delete_collection,
                "p": self.duplicate_selected_request,
                "m": self._start_move,
            },
            FocusedPanel.URL_BAR: {
                ENTER: lambda: self._begin_edit(EditingField.URL),
                "i": lambda: self._begin_edit(EditingField.URL),
                "m": self._method_next,
                "M": self._method_prev,
            },
            FocusedPanel.REQUEST_EDITOR: {
                "h": self._tab_prev,
                LEFT: self._tab_prev,
                "l": self._tab_next,
                RIGHT: self._tab_next,
                "j": self._editor_down,
                DOWN: self._editor_down,
                "k": self._editor_up,
                UP: self._editor_up,
                ENTER: self._editor_begin_edit,
                "i": self._editor_begin_edit,
                "m": self._method_next,
                "M": self._method_prev,
                "a": self._cycle_auth,
                "L": self._toggle_api_key_location,
                "t": self._toggle_row,
                "x": self._delete_row,
                "f": self.format_body,
            },
            FocusedPanel.RESPONSE_VIEW: {
                "j": lambda: self._scroll_response(1),
                DOWN: lambda: self._scroll_response(1),
                "k": lambda: self._scroll_response(-1),
                UP: lambda: self._scroll_response(-1),
                "/": self._start_search,
                "|": self._start_filter,
                "n": self._next_match,
                "N": self._prev_match,
                "c": self.copy_response,
                ESCAPE: self.clear_filter,
            },
        }

        self.load()

    # Startup and shutdown

    def load(self):
        """Populate the state from the store. Parse failures fall back to empty defaults."""
        state = self.state
        errors = []

        try:
            state.collections = list(self.store.load_collections())
        except StoreError as e:
            state.collections = []
            errors.append(str(e))
        errors.extend(str(e) for e in self.store.load_errors)

        self._environments_readable = True
        try:
            state.environments = self.store.load_environments()
        except ParseError as e:
            state.environments = EnvironmentSet()
            self._environments_readable = False
            errors.append(str(e))

        try:
            state.history = self.store.load_history()
        except ParseError as e:
            state.history = []
            errors.append(str(e))

        try:
            state.theme = self.store.load_settings().theme
        except ParseError as e:
            errors.append(str(e))

        if errors:
            state.error_message = errors[0] if len(errors) == 1 else f"{errors[0]} (+{len(errors) - 1} more)"
            logger.warning("Startup load errors", errors=errors)

    def persist(self):
        """Write session-level state that is not saved as it changes."""
        if not self._environments_readable:
            return
        try:
            self.store.save_environments(self.state.environments)
        except StoreError as e:
            logger.warning("Could not save environments", error=str(e))

    # Public contract

    def handle_input(self, event) -> StateDelta:
        try:
            if isinstance(event, MouseEvent):
                return self._handle_mouse(event)
            return self._handle_key(event)
        except TermpostError as e:
            self.state.error_message = str(e)
            return StateDelta()
        except Exception as e:
            logger.exception("Input handling failed", event=repr(event))
            self.state.error_message = f"Unexpected error: {e}"
            return StateDelta()

    def tick(self) -> Optional[DispatchOutcome]:
        pending = self.state.pending
        if pending is None:
            return None
        outcome = pending.handle.poll()
        if outcome is None:
            return None
        self._apply_outcome(pending, outcome)
        return outcome

    # Key routing

    def _handle_key(self, event: KeyEvent) -> StateDelta:
        state = self.state
        if state.show_help:
            state.show_help = False
            return StateDelta()

        had_error = state.error_message is not None
        state.error_message = None

        if state.dialog is not None:
            delta = self._dialog_key(event)
        elif state.input_mode == InputMode.EDITING:
            delta = self._editing_key(event)
        elif state.focused_panel == FocusedPanel.RESPONSE_VIEW and state.response_mode != ResponseMode.NORMAL:
            delta = self._prompt_key(event)
        else:
            delta = self._normal_key(event)

        if had_error and not delta.changed:
            return StateDelta()
        return delta

    def _normal_key(self, event: KeyEvent) -> StateDelta:
        state = self.state
        name = event.name

        if name == ESCAPE and state.pending_move is not None:
            state.pending_move = None
            state.status_message = "Move cancelled"
            return StateDelta()

        handler = self._panel_keys[state.focused_panel].get(name) or self._global_keys.get(name)
        if handler is None:
            return UNCHANGED
        return handler() or StateDelta()

    # Focus

    def focus(self, panel: FocusedPanel):
        self.state.focused_panel = panel

    def focus_next(self):
        self.state.focused_panel = self.state.focused_panel.next()

    def focus_prev(self):
        self.state.focused_panel = self.state.focused_panel.prev()

    def quit(self):
        self.state.should_quit = True

    def show_help(self):
        self.state.show_help = True

    # Request lifecycle

    def send(self) -> StateDelta:
        """Resolve the current request and hand it to the dispatcher.

        A no-op while another request is in flight.
        """
        state = self.state
        if state.input_mode != InputMode.NORMAL or state.pending is not None:
            return UNCHANGED

        try:
            resolved = resolve_request(state.current_request, state.environments.active_variables())
        except ValidationError as e:
            state.error_message = str(e)
            return StateDelta()

        handle = self.dispatcher.dispatch(resolved)
        state.pending = PendingRequest(
            request_id=state.current_request.id,
            handle=handle,
            started_at=self.clock(),
            request_snapshot=state.current_request.model_copy(deep=True),
        )
        missing = unresolved_variables(state.current_request.url, state.environments.active_variables())
        if missing:
            state.status_message = f"Sending request... (unresolved: {', '.join(missing)})"
        else:
            state.status_message = "Sending request..."
        return StateDelta(dispatched=True)

    def _apply_outcome(self, pending: PendingRequest, outcome: DispatchOutcome):
        state = self.state
        state.pending = None
        self._reset_response_view()

        if outcome.ok:
            response = outcome.response
            state.response = response
            state.response_error = None
            state.status_message = f"{response.status} {response.status_text} - {response.elapsed_ms}ms"
            entry = HistoryEntry(
                request=pending.request_snapshot,
                status_code=response.status,
                duration_ms=response.elapsed_ms,
            )
        else:
            state.response = None
            state.response_error = outcome.error
            state.status_message = None
            state.error_message = f"Request failed: {outcome.error}"
            entry = HistoryEntry(
                request=pending.request_snapshot,
                duration_ms=outcome.elapsed_ms,
                error=outcome.error,
            )

        try:
            state.history = self.store.append_history(entry, state.history)
        except StoreError as e:
            history = [entry] + state.history
            del history[self.store.config.history_limit:]
            state.history = history
            state.error_message = f"Could not save history: {e}"

    def _reset_response_view(self):
        state = self.state
        state.response_scroll = 0
        state.response_mode = ResponseMode.NORMAL
        state.filter_query = None
        state.filter_result = None
        state.filter_error = None
        state.search_query = None
        state.search_matches = []
        state.search_index = 0

    def _load_request(self, request: ApiRequest, collection_id: Optional[str] = None):
        state = self.state
        state.current_request = request.model_copy(deep=True)
        state.source_collection_id = collection_id
        state.source_request_id = request.id if collection_id else None
        state.response = None
        state.response_error = None
        state.selected_header = 0
        state.selected_param = 0
        state.body_scroll = 0
        self._reset_response_view()

    def new_request(self):
        self._load_request(ApiRequest())
        self.state.focused_panel = FocusedPanel.URL_BAR
        self._begin_edit(EditingField.URL)

    def save_current_request(self):
        state = self.state
        if state.source_collection_id is None or state.source_request_id is None:
            state.error_message = "Use 'r' in Request List to create a new saved request"
            return
        request = state.current_request.model_copy(update={"id": state.source_request_id}, deep=True)
        try:
            self.store.update_request(state.source_collection_id, request)
        except StoreError as e:
            state.error_message = f"Failed to save request: {e}"
            return
        self._refresh_collections()
        state.status_message = "Request saved"

    # Environments, history, theme

    def cycle_environment(self):
        environments = self.state.environments
        if not environments.environments:
            self.state.status_message = "No environments defined"
            return
        environments.next()
        self.state.status_message = f"Switched to environment: {environments.active_name()}"

    def reload_environments(self):
        """Re-read environments; the in-memory set is only replaced if parsing succeeds."""
        state = self.state
        try:
            loaded = self.store.load_environments()
        except ParseError as e:
            state.error_message = f"Failed to reload environments: {e}"
            return

        current = state.environments.active()
        if current is not None:
            index = loaded.index_of(current.name)
            if index is not None:
                loaded.active_index = index
        state.environments = loaded
        self._environments_readable = True
        names = ", ".join(env.name for env in loaded.environments)
        state.status_message = f"Loaded {len(loaded.environments)} environments [{names}]"

    def toggle_history(self):
        state = self.state
        state.show_history = not state.show_history
        state.focused_panel = FocusedPanel.REQUEST_LIST
        state.pending_move = None
        state.selected_history = min(state.selected_history, max(len(state.history) - 1, 0))

    def cycle_theme(self):
        state = self.state
        state.theme = next_theme(state.theme)
        state.status_message = f"Theme: {state.theme}"
        try:
            self.store.save_settings(Settings(theme=state.theme))
        except StoreError as e:
            state.error_message = f"Could not save settings: {e}"

    # Clipboard and formatting

    def copy_as_curl(self):
        command = request_to_curl(self.state.current_request, self.state.environments.active_variables())
        self.clipboard(command)
        self.state.status_message = "Copied curl command to clipboard"

    def copy_response(self):
        state = self.state
        if state.response is None:
            state.error_message = "No response to copy"
            return
        self.clipboard(state.response_text())
        state.status_message = "Copied response to clipboard"

    def format_body(self) -> StateDelta:
        state = self.state
        if state.request_tab != RequestTab.BODY:
            return UNCHANGED
        body = state.current_request.body
        if not body.strip():
            return UNCHANGED
        try:
            parsed = json.loads(body)
        except ValueError as e:
            state.error_message = f"Invalid JSON: {e}"
            return StateDelta()
        state.current_request.body = json.dumps(parsed, indent=2, ensure_ascii=False)
        state.status_message = "Formatted JSON"
        return StateDelta()

    # Request list

    def _rows(self):
        return self.state.visible_rows()

    def _clamp_selection(self):
        state = self.state
        count = len(self._rows())
        state.selected_row = min(state.selected_row, max(count - 1, 0))
        state.selected_history = min(state.selected_history, max(len(state.history) - 1, 0))

    def _list_down(self) -> StateDelta:
        state = self.state
        if state.show_history:
            limit = max(len(state.history) - 1, 0)
            if state.selected_history >= limit:
                return UNCHANGED
            state.selected_history += 1
            return StateDelta()
        if state.selected_row >= len(self._rows()) - 1:
            return UNCHANGED
        state.selected_row += 1
        return StateDelta()

    def _list_up(self) -> StateDelta:
        state = self.state
        if state.show_history:
            if state.selected_history == 0:
                return UNCHANGED
            state.selected_history -= 1
            return StateDelta()
        if state.selected_row == 0:
            return UNCHANGED
        state.selected_row -= 1
        return StateDelta()

    def _list_enter(self) -> StateDelta:
        state = self.state
        if state.show_history:
            if not state.history:
                return UNCHANGED
            entry = state.history[min(state.selected_history, len(state.history) - 1)]
            self._load_request(entry.request)
            state.focused_panel = FocusedPanel.URL_BAR
            return StateDelta()

        if state.pending_move is not None:
            self._complete_move()
            return StateDelta()

        row = state.selected_list_row()
        if row is None:
            return UNCHANGED
        if row.is_request:
            self._load_request(row.node.request, row.collection.id)
            state.focused_panel = FocusedPanel.URL_BAR
            return StateDelta()
        return self.toggle_expanded()

    def toggle_expanded(self) -> StateDelta:
        state = self.state
        if state.show_history:
            return UNCHANGED
        row = state.selected_list_row()
        if row is None or row.is_request:
            return UNCHANGED
        if row.is_header:
            row.collection.expanded = not row.collection.expanded
        else:
            row.collection.toggle_expanded(row.node.id)
        self._clamp_selection()
        return StateDelta()

    def _selected_row_or_error(self) -> Optional[ListRow]:
        state = self.state
        if state.show_history:
            return None
        row = state.selected_list_row()
        if row is None:
            state.error_message = "Create a collection first"
        return row

    @staticmethod
    def _destination_folder(row: ListRow) -> Optional[str]:
        """Folder new items go into: the selected folder, a request's parent, or the root."""
        if row.is_header:
            return None
        if row.is_folder:
            return row.node.id
        return row.node.parent_id

    def _refresh_collections(self):
        state = self.state
        state.collections = list(self.store.collections())
        known = {c.id for c in state.collections}
        if state.source_collection_id is not None:
            if state.source_collection_id not in known:
                state.source_collection_id = None
                state.source_request_id = None
            else:
                source = next(c for c in state.collections if c.id == state.source_collection_id)
                if source.find_request(state.source_request_id) is None:
                    state.source_collection_id = None
                    state.source_request_id = None
        self._clamp_selection()

    def _select_node(self, collection_id: str, node_id: Optional[str] = None):
        for index, row in enumerate(self._rows()):
            if row.collection.id != collection_id:
                continue
            if (node_id is None and row.is_header) or (row.node is not None and row.node.id == node_id):
                self.state.selected_row = index
                return

    # Dialogs

    def _open_dialog(self, dialog_type: DialogType, **kwargs):
        self.state.dialog = DialogState(dialog_type=dialog_type, **kwargs)

    def _start_create_collection(self):
        if self.state.show_history:
            return UNCHANGED
        self._open_dialog(DialogType.CREATE_COLLECTION, prompt="Collection name")

    def _start_create_folder(self):
        row = self._selected_row_or_error()
        if row is None:
            return UNCHANGED if self.state.show_history else None
        self._open_dialog(
            DialogType.CREATE_FOLDER,
            collection_id=row.collection.id,
            parent_id=self._destination_folder(row),
            prompt="Folder name",
        )

    def _start_create_request(self):
        row = self._selected_row_or_error()
        if row is None:
            return UNCHANGED if self.state.show_history else None
        self._open_dialog(
            DialogType.CREATE_REQUEST,
            collection_id=row.collection.id,
            parent_id=self._destination_folder(row),
            prompt="Request name",
        )

    def _start_rename(self):
        row = self._selected_row_or_error()
        if row is None:
            return UNCHANGED if self.state.show_history else None
        if row.is_header:
            self._open_dialog(
                DialogType.RENAME,
                collection_id=row.collection.id,
                input=row.collection.name,
                prompt="New name",
            )
        else:
            self._open_dialog(
                DialogType.RENAME,
                collection_id=row.collection.id,
                node_id=row.node.id,
                input=row.node.name,
                prompt="New name",
            )

    def _start_delete(self):
        row = self._selected_row_or_error()
        if row is None:
            return UNCHANGED if self.state.show_history else None
        if row.is_header:
            return self._start_delete_collection()
        kind = "folder" if row.is_folder else "request"
        self._open_dialog(
            DialogType.CONFIRM_DELETE,
            collection_id=row.collection.id,
            node_id=row.node.id,
            prompt=f"Delete {kind} '{row.node.name}'? (y/n)",
        )

    def _start_delete_collection(self):
        row = self._selected_row_or_error()
        if row is None:
            return UNCHANGED if self.state.show_history else None
        self._open_dialog(
            DialogType.CONFIRM_DELETE_COLLECTION,
            collection_id=row.collection.id,
            prompt=f"Delete collection '{row.collection.name}' and everything in it? (y/n)",
        )

    def _dialog_key(self, event: KeyEvent) -> StateDelta:
        state = self.state
        dialog = state.dialog

        if dialog.dialog_type.is_confirmation:
            if event.name in ("y", "Y"):
                state.dialog = None
                self._execute_delete(dialog)
                return StateDelta()
            if event.name in ("n", "N", ESCAPE):
                state.dialog = None
                return StateDelta()
            return UNCHANGED

        if event.key == ESCAPE:
            state.dialog = None
            return StateDelta()
        if event.key == ENTER:
            name = dialog.input.strip()
            if not name:
                state.error_message = "Name cannot be empty"
                return StateDelta()
            state.dialog = None
            self._execute_dialog(dialog, name)
            return StateDelta()
        if event.key == BACKSPACE:
            if not dialog.input:
                return UNCHANGED
            dialog.input = dialog.input[:-1]
            return StateDelta()
        if event.printable:
            dialog.input += event.printable
            return StateDelta()
        return UNCHANGED

    def _execute_dialog(self, dialog: DialogState, name: str):
        state = self.state
        try:
            if dialog.dialog_type == DialogType.CREATE_COLLECTION:
                collection = self.store.create_collection(name)
                self._refresh_collections()
                self._select_node(collection.id)
                state.status_message = f"Created collection: {name}"

            elif dialog.dialog_type == DialogType.CREATE_FOLDER:
                node = self.store.create_node(dialog.collection_id, dialog.parent_id, name)
                self._refresh_collections()
                self._select_node(dialog.collection_id, node.id)
                state.status_message = f"Created folder: {name}"

            elif dialog.dialog_type == DialogType.CREATE_REQUEST:
                node = self.store.create_node(dialog.collection_id, dialog.parent_id, name, ApiRequest(name=name))
                self._refresh_collections()
                self._select_node(dialog.collection_id, node.id)
                state.status_message = f"Created request: {name}"

            elif dialog.dialog_type == DialogType.RENAME:
                if dialog.node_id is None:
                    self.store.rename_collection(dialog.collection_id, name)
                else:
                    self.store.rename_node(dialog.collection_id, dialog.node_id, name)
                    if dialog.node_id == state.source_request_id:
                        state.current_request.name = name
                self._refresh_collections()
                state.status_message = f"Renamed to: {name}"
        except StoreError as e:
            logger.warning("Collection change failed", dialog=dialog.dialog_type.value, error=str(e))
            state.error_message = str(e)

    def _execute_delete(self, dialog: DialogState):
        state = self.state
        try:
            if dialog.dialog_type == DialogType.CONFIRM_DELETE_COLLECTION:
                name = self.store.get_collection(dialog.collection_id).name
                self.store.delete_collection(dialog.collection_id)
                state.status_message = f"Deleted collection: {name}"
            else:
                removed = self.store.delete_node(dialog.collection_id, dialog.node_id)
                state.status_message = f"Deleted {len(removed)} item(s)"
        except StoreError as e:
            logger.warning("Delete failed", collection_id=dialog.collection_id, error=str(e))
            state.error_message = str(e)
            return
        self._refresh_collections()

    def duplicate_selected_request(self):
        state = self.state
        if state.show_history:
            return UNCHANGED
        row = state.selected_list_row()
        if row is None or not row.is_request:
            state.status_message = "Can only duplicate requests"
            return
        original = row.node.request
        copy = original.model_copy(deep=True, update={"id": new_id(), "name": f"{original.name} (copy)"})
        try:
            node = self.store.create_node(row.collection.id, row.node.parent_id, copy.name, copy)
        except StoreError as e:
            state.error_message = str(e)
            return
        self._refresh_collections()
        self._select_node(row.collection.id, node.id)
        state.status_message = "Request duplicated"

    # Moving items

    def _start_move(self):
        state = self.state
        if state.show_history:
            return UNCHANGED
        row = state.selected_list_row()
        if row is None:
            return UNCHANGED
        if row.is_header:
            state.status_message = "Cannot move collections"
            return
        state.pending_move = PendingMove(collection_id=row.collection.id, node_id=row.node.id, name=row.node.name)
        state.status_message = f"Moving: {row.node.name} - navigate to destination, Enter to move, Esc to cancel"

    def _complete_move(self):
        state = self.state
        pending = state.pending_move
        state.pending_move = None
        row = state.selected_list_row()
        if row is None:
            return

        dest_parent = self._destination_folder(row)
        try:
            source = self.store.get_collection(pending.collection_id)
            same_place = (
                row.collection.id == pending.collection_id
                and source.parent_folder_id(pending.node_id) == dest_parent
            )
            if same_place:
                state.status_message = "Item already in this location"
                return
            self.store.move_node(pending.collection_id, pending.node_id, row.collection.id, dest_parent)
        except StoreError as e:
            logger.warning("Move failed", node_id=pending.node_id, error=str(e))
            state.error_message = str(e)
            return

        if state.source_request_id == pending.node_id or self._moved_source(pending):
            state.source_collection_id = row.collection.id
        self._refresh_collections()
        self._select_node(row.collection.id, pending.node_id)
        state.status_message = f"Moved: {pending.name}"

    def _moved_source(self, pending: PendingMove) -> bool:
        """Whether the loaded request sat inside the subtree that was just moved."""
        state = self.state
        if state.source_request_id is None or state.source_collection_id != pending.collection_id:
            return False
        source = self.store.get_collection(pending.collection_id)
        return state.source_request_id not in source

    # URL bar and request editor

    def _method_next(self):
        request = self.state.current_request
        request.method = request.method.next()

    def _method_prev(self):
        request = self.state.current_request
        request.method = request.method.prev()

    def _tab_next(self):
        self.state.request_tab = self.state.request_tab.next()

    def _tab_prev(self):
        self.state.request_tab = self.state.request_tab.prev()

    def _rows_for_tab(self):
        state = self.state
        if state.request_tab == RequestTab.HEADERS:
            return state.current_request.headers, "selected_header"
        if state.request_tab == RequestTab.PARAMS:
            return state.current_request.query_params, "selected_param"
        return None, None

    def _editor_down(self) -> StateDelta:
        state = self.state
        if state.request_tab == RequestTab.BODY:
            state.body_scroll += 1
            return StateDelta()
        rows, attr = self._rows_for_tab()
        if rows is None or getattr(state, attr) >= len(rows) - 1:
            return UNCHANGED
        setattr(state, attr, getattr(state, attr) + 1)
        return StateDelta()

    def _editor_up(self) -> StateDelta:
        state = self.state
        if state.request_tab == RequestTab.BODY:
            if state.body_scroll == 0:
                return UNCHANGED
            state.body_scroll -= 1
            return StateDelta()
        rows, attr = self._rows_for_tab()
        if rows is None or getattr(state, attr) == 0:
            return UNCHANGED
        setattr(state, attr, getattr(state, attr) - 1)
        return StateDelta()

    def _toggle_row(self) -> StateDelta:
        rows, attr = self._rows_for_tab()
        if not rows:
            return UNCHANGED
        row = rows[getattr(self.state, attr)]
        row.enabled = not row.enabled
        return StateDelta()

    def _delete_row(self) -> StateDelta:
        state = self.state
        rows, attr = self._rows_for_tab()
        if not rows:
            return UNCHANGED
        index = getattr(state, attr)
        del rows[index]
        setattr(state, attr, min(index, max(len(rows) - 1, 0)))
        return StateDelta()

    def _cycle_auth(self) -> StateDelta:
        state = self.state
        if state.request_tab != RequestTab.AUTH:
            return UNCHANGED
        auth = state.current_request.auth
        auth.auth_type = auth.auth_type.next()
        return StateDelta()

    def _toggle_api_key_location(self) -> StateDelta:
        state = self.state
        auth = state.current_request.auth
        if state.request_tab != RequestTab.AUTH or auth.auth_type != AuthType.API_KEY:
            return UNCHANGED
        if auth.api_key_location == ApiKeyLocation.HEADER:
            auth.api_key_location = ApiKeyLocation.QUERY
        else:
            auth.api_key_location = ApiKeyLocation.HEADER
        return StateDelta()

    def _editor_begin_edit(self) -> StateDelta:
        state = self.state
        request = state.current_request
        tab = state.request_tab

        if tab == RequestTab.HEADERS:
            if not request.headers:
                request.headers.append(KeyValue())
                state.selected_header = 0
            state.selected_header = min(state.selected_header, len(request.headers) - 1)
            self._begin_edit(EditingField.HEADER_KEY, state.selected_header)
        elif tab == RequestTab.PARAMS:
            if not request.query_params:
                request.query_params.append(KeyValue())
                state.selected_param = 0
            state.selected_param = min(state.selected_param, len(request.query_params) - 1)
            self._begin_edit(EditingField.PARAM_KEY, state.selected_param)
        elif tab == RequestTab.BODY:
            self._begin_edit(EditingField.BODY)
        else:
            first_field = {
                AuthType.BEARER: EditingField.BEARER_TOKEN,
                AuthType.BASIC: EditingField.BASIC_USERNAME,
                AuthType.API_KEY: EditingField.API_KEY_NAME,
            }.get(request.auth.auth_type)
            if first_field is None:
                state.status_message = "Select auth type first with 'a' key"
                return StateDelta()
            self._begin_edit(first_field)
        return StateDelta()

    # Editing mode

    def _field_target(self):
        """The (object, attribute) pair holding the text of the field being edited."""
        state = self.state
        request = state.current_request
        field_ = state.editing_field
        if field_ is None:
            return None
        if field_ == EditingField.URL:
            return request, "url"
        if field_ == EditingField.BODY:
            return request, "body"
        if field_.is_indexed:
            rows = request.headers if field_ in (EditingField.HEADER_KEY, EditingField.HEADER_VALUE) else request.query_params
            if not 0 <= state.editing_index < len(rows):
                return None
            attr = "key" if field_ in (EditingField.HEADER_KEY, EditingField.PARAM_KEY) else "value"
            return rows[state.editing_index], attr
        return request.auth, field_.value

    def field_text(self) -> str:
        target = self._field_target()
        return getattr(*target) if target else ""

    def _set_field_text(self, text: str):
        target = self._field_target()
        if target:
            setattr(target[0], target[1], text)

    def _begin_edit(self, field_: EditingField, index: int = 0):
        state = self.state
        state.input_mode = InputMode.EDITING
        state.editing_field = field_
        state.editing_index = index
        text = self.field_text()
        state.edit_snapshot = text
        state.cursor = len(text)

    def _end_edit(self):
        state = self.state
        state.input_mode = InputMode.NORMAL
        state.editing_field = None
        state.editing_index = 0
        state.edit_snapshot = None
        state.cursor = 0

    def _next_field(self):
        state = self.state
        request = state.current_request
        field_ = state.editing_field
        index = state.editing_index

        if field_ == EditingField.URL:
            self._end_edit()
        elif field_ == EditingField.HEADER_KEY:
            self._begin_edit(EditingField.HEADER_VALUE, index)
        elif field_ == EditingField.HEADER_VALUE:
            if index + 1 >= len(request.headers):
                request.headers.append(KeyValue())
            state.selected_header = index + 1
            self._begin_edit(EditingField.HEADER_KEY, index + 1)
        elif field_ == EditingField.PARAM_KEY:
            self._begin_edit(EditingField.PARAM_VALUE, index)
        elif field_ == EditingField.PARAM_VALUE:
            if index + 1 >= len(request.query_params):
                request.query_params.append(KeyValue())
            state.selected_param = index + 1
            self._begin_edit(EditingField.PARAM_KEY, index + 1)
        elif field_ == EditingField.BASIC_USERNAME:
            self._begin_edit(EditingField.BASIC_PASSWORD)
        elif field_ == EditingField.BASIC_PASSWORD:
            self._begin_edit(EditingField.BASIC_USERNAME)
        elif field_ == EditingField.API_KEY_NAME:
            self._begin_edit(EditingField.API_KEY_VALUE)
        elif field_ == EditingField.API_KEY_VALUE:
            self._begin_edit(EditingField.API_KEY_NAME)
        elif field_ is not None:
            self._begin_edit(field_, index)

    def _editing_key(self, event: KeyEvent) -> StateDelta:
        state = self.state
        key = event.key

        if key == ESCAPE:
            self._end_edit()
            return StateDelta()
        if key == CTRL_S:
            self._end_edit()
            self.save_current_request()
            return StateDelta()
        if key == TAB:
            self._next_field()
            return StateDelta()
        if key == ENTER:
            if state.editing_field == EditingField.BODY:
                self._insert("\n")
            else:
                self._next_field()
            return StateDelta()

        text = self.field_text()
        cursor = min(state.cursor, len(text))

        if key == BACKSPACE:
            if cursor == 0:
                return UNCHANGED
            self._set_field_text(text[:cursor - 1] + text[cursor:])
            state.cursor = cursor - 1
        elif key == DELETE:
            if cursor >= len(text):
                return UNCHANGED
            self._set_field_text(text[:cursor] + text[cursor + 1:])
        elif key == LEFT:
            state.cursor = max(cursor - 1, 0)
        elif key == RIGHT:
            state.cursor = min(cursor + 1, len(text))
        elif key == HOME:
            state.cursor = 0
        elif key == END:
            state.cursor = len(text)
        elif key in (UP, DOWN):
            if state.editing_field != EditingField.BODY:
                return UNCHANGED
            state.cursor = _vertical_move(text, cursor, -1 if key == UP else 1)
            self._keep_cursor_visible()
        elif event.printable:
            self._insert(event.printable)
        else:
            return UNCHANGED
        return StateDelta()

    def _insert(self, chars: str):
        state = self.state
        text = self.field_text()
        cursor = min(state.cursor, len(text))
        self._set_field_text(text[:cursor] + chars + text[cursor:])
        state.cursor = cursor + len(chars)
        self._keep_cursor_visible()

    def _keep_cursor_visible(self, height: int = 10):
        state = self.state
        if state.editing_field != EditingField.BODY:
            return
        line = self.field_text()[:state.cursor].count("\n")
        if line < state.body_scroll:
            state.body_scroll = line
        elif line >= state.body_scroll + height:
            state.body_scroll = line - height + 1

    # Response view

    def _scroll_response(self, step: int) -> StateDelta:
        state = self.state
        scroll = max(state.response_scroll + step, 0)
        if scroll == state.response_scroll:
            return UNCHANGED
        state.response_scroll = scroll
        return StateDelta()

    def _start_search(self):
        state = self.state
        state.response_mode = ResponseMode.SEARCH
        state.search_input = state.search_query or ""

    def _start_filter(self):
        state = self.state
        state.response_mode = ResponseMode.FILTER
        state.filter_input = state.filter_query or ""
        state.filter_history_index = None
        state.filter_error = None

    def clear_filter(self) -> StateDelta:
        state = self.state
        if state.filter_query is None and state.search_query is None and state.filter_error is None:
            return UNCHANGED
        state.filter_query = None
        state.filter_result = None
        state.filter_error = None
        state.search_query = None
        state.search_matches = []
        state.search_index = 0
        state.response_scroll = 0
        state.status_message = "Filter cleared"
        return StateDelta()

    def _next_match(self):
        state = self.state
        if not state.search_query:
            return self.new_request()
        if not state.search_matches:
            return UNCHANGED
        state.search_index = (state.search_index + 1) % len(state.search_matches)
        state.response_scroll = state.search_matches[state.search_index]

    def _prev_match(self):
        state = self.state
        if not state.search_matches:
            return UNCHANGED
        state.search_index = (state.search_index - 1) % len(state.search_matches)
        state.response_scroll = state.search_matches[state.search_index]

    def _prompt_key(self, event: KeyEvent) -> StateDelta:
        """Keys while the response view is reading a search or filter query."""
        state = self.state
        searching = state.response_mode == ResponseMode.SEARCH
        attr = "search_input" if searching else "filter_input"
        key = event.key

        if key == ESCAPE:
            state.response_mode = ResponseMode.NORMAL
            if not searching:
                state.filter_error = None
            return StateDelta()
        if key == ENTER:
            if searching:
                self._apply_search(state.search_input)
            else:
                self._apply_filter(state.filter_input)
            return StateDelta()
        if key == BACKSPACE:
            value = getattr(state, attr)
            if not value:
                return UNCHANGED
            setattr(state, attr, value[:-1])
            return StateDelta()
        if not searching and key in (UP, DOWN):
            return self._browse_filter_history(-1 if key == UP else 1)
        if event.printable:
            setattr(state, attr, getattr(state, attr) + event.printable)
            return StateDelta()
        return UNCHANGED

    def _apply_search(self, query: str):
        state = self.state
        state.response_mode = ResponseMode.NORMAL
        if not query:
            state.search_query = None
            state.search_matches = []
            return
        needle = query.lower()
        lines = state.response_text().splitlines()
        state.search_query = query
        state.search_matches = [i for i, line in enumerate(lines) if needle in line.lower()]
        state.search_index = 0
        if state.search_matches:
            state.response_scroll = state.search_matches[0]
            state.status_message = f"{len(state.search_matches)} matches for '{query}'"
        else:
            state.status_message = f"No matches for '{query}'"

    def _apply_filter(self, query: str):
        """Run a jq query over the response; failures stay in the response view."""
        state = self.state
        query = query.strip()
        if not query:
            state.response_mode = ResponseMode.NORMAL
            self.clear_filter()
            return
        if state.response is None:
            state.filter_error = "No response to filter"
            return
        try:
            result = self.filter_text(state.response.text, query)
        except FilterError as e:
            state.filter_error = str(e)
            return

        state.filter_query = query
        state.filter_result = result
        state.filter_error = None
        state.response_mode = ResponseMode.NORMAL
        state.response_scroll = 0
        state.search_query = None
        state.search_matches = []
        if query in state.filter_history:
            state.filter_history.remove(query)
        state.filter_history.append(query)
        del state.filter_history[:-FILTER_HISTORY_LIMIT]

    def _browse_filter_history(self, step: int) -> StateDelta:
        state = self.state
        history = state.filter_history
        if not history:
            return UNCHANGED
        if state.filter_history_index is None:
            if step > 0:
                return UNCHANGED
            index = len(history) - 1
        else:
            index = max(state.filter_history_index + step, 0)
        if index >= len(history):
            state.filter_history_index = None
            state.filter_input = ""
            return StateDelta()
        state.filter_history_index = index
        state.filter_input = history[index]
        return StateDelta()

    # Mouse

    def _handle_mouse(self, event: MouseEvent) -> StateDelta:
        state = self.state
        if event.kind == MouseKind.CLICK:
            if state.show_help:
                state.show_help = False
                return StateDelta()
            if state.dialog is not None or event.panel is None:
                return UNCHANGED
            return self._click(event)

        step = -SCROLL_STEP if event.kind == MouseKind.SCROLL_UP else SCROLL_STEP
        if event.panel == FocusedPanel.RESPONSE_VIEW:
            return self._scroll_response(step)
        if event.panel == FocusedPanel.REQUEST_EDITOR and state.request_tab == RequestTab.BODY:
            scroll = max(state.body_scroll + step, 0)
            if scroll == state.body_scroll:
                return UNCHANGED
            state.body_scroll = scroll
            return StateDelta()
        return UNCHANGED

    def _click(self, event: MouseEvent) -> StateDelta:
        state = self.state
        state.focused_panel = event.panel

        if event.panel == FocusedPanel.URL_BAR:
            self._begin_edit(EditingField.URL)
            return StateDelta()

        self._end_edit()
        if event.row is None:
            return StateDelta()

        if event.panel == FocusedPanel.REQUEST_LIST:
            if state.show_history:
                state.selected_history = min(event.row, max(len(state.history) - 1, 0))
            else:
                state.selected_row = min(event.row, max(len(self._rows()) - 1, 0))
        elif event.panel == FocusedPanel.REQUEST_EDITOR:
            rows, attr = self._rows_for_tab()
            if rows is not None and event.row < len(rows):
                setattr(state, attr, event.row)
        return StateDelta()


def _vertical_move(text: str, cursor: int, direction: int) -> int:
    """Cursor position one line up or down, keeping the column where possible."""
    line_start = text.rfind("\n", 0, cursor) + 1
    column = cursor - line_start

    if direction < 0:
        if line_start == 0:
            return cursor
        prev_start = text.rfind("\n", 0, line_start - 1) + 1
        return prev_start + min(column, line_start - 1 - prev_start)

    next_break = text.find("\n", cursor)
    if next_break == -1:
        return cursor
    next_start = next_break + 1
    next_end = text.find("\n", next_start)
    if next_end == -1:
        next_end = len(text)
    return next_start + min(column, next_end - next_start)
