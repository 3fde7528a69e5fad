"""Tests for the session orchestrator state machine."""

import copy

import pytest

from termpost.errors import ClipboardError, FilterError
from termpost.events import BACKSPACE, ENTER, ESCAPE, LEFT, SHIFT_TAB, TAB, KeyEvent, MouseEvent, MouseKind
from termpost.models import ApiRequest, AuthType, HTTPMethod, KeyValue
from termpost.orchestrator import Orchestrator
from termpost.state import EditingField, FocusedPanel, InputMode, RequestTab, ResponseMode


def press(orchestrator: Orchestrator, *keys: str):
    """Feed named keys or single characters, returning the last delta."""
    delta = None
    for key in keys:
        event = KeyEvent.char(key) if len(key) == 1 else KeyEvent(key)
        delta = orchestrator.handle_input(event)
    return delta


def type_text(orchestrator: Orchestrator, text: str):
    for char in text:
        orchestrator.handle_input(KeyEvent.char(char))


def ready_request(orchestrator: Orchestrator, url: str = "http://api.test/ping"):
    orchestrator.state.current_request = ApiRequest(url=url)


class TestStartup:
    def test_loads_sample_collection(self, orchestrator) -> None:
        state = orchestrator.state
        assert [c.name for c in state.collections] == ["Sample Collection"]
        assert state.environments.active_name() == "default"
        assert state.theme == "Classic"
        assert state.error_message is None

    def test_malformed_files_fall_back_to_defaults(self, store, dispatcher, config) -> None:
        config.environments_file.write_text("{broken", encoding="utf-8")
        config.history_file.write_text("[]", encoding="utf-8")
        orchestrator = Orchestrator(store, dispatcher, clipboard=lambda text: None)

        assert orchestrator.state.environments.environments == []
        assert orchestrator.state.history == []
        assert "(+1 more)" in orchestrator.state.error_message

    def test_persist_keeps_unreadable_environments_file(self, store, dispatcher, config) -> None:
        config.environments_file.write_text("{broken", encoding="utf-8")
        orchestrator = Orchestrator(store, dispatcher, clipboard=lambda text: None)
        orchestrator.persist()
        assert config.environments_file.read_text(encoding="utf-8") == "{broken"


class TestFocus:
    @pytest.mark.parametrize("steps", [1, 3, 4, 9])
    def test_forward_then_back_returns_home(self, orchestrator, steps) -> None:
        start = orchestrator.state.focused_panel
        press(orchestrator, *[TAB] * steps)
        press(orchestrator, *[SHIFT_TAB] * steps)
        assert orchestrator.state.focused_panel == start

    def test_wraps_both_ends(self, orchestrator) -> None:
        press(orchestrator, SHIFT_TAB)
        assert orchestrator.state.focused_panel == FocusedPanel.RESPONSE_VIEW
        press(orchestrator, TAB)
        assert orchestrator.state.focused_panel == FocusedPanel.REQUEST_LIST

    def test_number_keys_jump(self, orchestrator) -> None:
        press(orchestrator, "3")
        assert orchestrator.state.focused_panel == FocusedPanel.REQUEST_EDITOR
        press(orchestrator, "4")
        assert orchestrator.state.focused_panel == FocusedPanel.RESPONSE_VIEW

    def test_unbound_key_is_a_noop(self, orchestrator) -> None:
        assert not press(orchestrator, "z").changed


class TestSend:
    def test_send_dispatches_resolved_request(self, orchestrator, dispatcher) -> None:
        orchestrator.state.current_request = ApiRequest(url="{{base_url}}/ping")
        delta = press(orchestrator, "s")

        assert delta.dispatched
        assert orchestrator.state.is_loading
        assert dispatcher.handles[0].resolved.url == "http://localhost:3000/ping"
        assert orchestrator.state.pending.started_at == 100.0

    def test_unresolved_variables_are_reported(self, orchestrator, dispatcher) -> None:
        orchestrator.state.current_request = ApiRequest(url="{{host}}/ping")
        press(orchestrator, "s")
        assert dispatcher.handles[0].resolved.url == "{{host}}/ping"
        assert "unresolved: host" in orchestrator.state.status_message

    def test_send_while_in_flight_is_a_noop(self, orchestrator, dispatcher) -> None:
        ready_request(orchestrator)
        press(orchestrator, "s")
        pending = orchestrator.state.pending

        delta = press(orchestrator, "s")

        assert not delta.changed
        assert not delta.dispatched
        assert orchestrator.state.pending is pending
        assert len(dispatcher.handles) == 1

    def test_in_flight_send_keeps_previous_response(self, orchestrator, dispatcher) -> None:
        ready_request(orchestrator)
        press(orchestrator, "s")
        dispatcher.handles[0].succeed()
        orchestrator.tick()
        previous = orchestrator.state.response

        press(orchestrator, "s")
        press(orchestrator, "s")
        assert orchestrator.state.response is previous
        assert len(dispatcher.handles) == 2

    def test_empty_url_is_rejected_locally(self, orchestrator, dispatcher) -> None:
        press(orchestrator, "s")
        assert orchestrator.state.error_message == "URL is required"
        assert orchestrator.state.pending is None
        assert dispatcher.handles == []

    def test_send_ignored_while_editing(self, orchestrator, dispatcher) -> None:
        ready_request(orchestrator)
        press(orchestrator, "2", ENTER, "s")
        assert dispatcher.handles == []
        assert orchestrator.state.current_request.url.endswith("s")


class TestTick:
    def test_nothing_pending(self, orchestrator) -> None:
        before = copy.deepcopy(orchestrator.state)
        assert orchestrator.tick() is None
        assert orchestrator.state == before

    def test_pending_but_not_ready_leaves_state_untouched(self, orchestrator) -> None:
        ready_request(orchestrator)
        press(orchestrator, "s")
        before = copy.deepcopy(orchestrator.state)

        assert orchestrator.tick() is None
        assert orchestrator.state == before

    def test_success_is_applied(self, orchestrator, dispatcher, store) -> None:
        ready_request(orchestrator)
        press(orchestrator, "s")
        dispatcher.handles[0].succeed(status=200, elapsed_ms=42)

        outcome = orchestrator.tick()

        state = orchestrator.state
        assert outcome.ok
        assert state.pending is None
        assert state.response.status == 200
        assert state.status_message == "200 OK - 42ms"
        assert state.history[0].status_code == 200
        assert state.history[0].request.url == "http://api.test/ping"
        assert store.load_history()[0].id == state.history[0].id
        assert orchestrator.tick() is None

    def test_failure_is_applied(self, orchestrator, dispatcher) -> None:
        ready_request(orchestrator)
        press(orchestrator, "s")
        dispatcher.handles[0].fail("Connection refused")

        orchestrator.tick()

        state = orchestrator.state
        assert state.response is None
        assert state.response_error == "Connection refused"
        assert state.error_message == "Request failed: Connection refused"
        assert state.history[0].status_code is None
        assert state.history[0].error == "Connection refused"

    def test_history_snapshot_ignores_later_edits(self, orchestrator, dispatcher) -> None:
        ready_request(orchestrator)
        press(orchestrator, "s")
        orchestrator.state.current_request.url = "http://changed"
        dispatcher.handles[0].succeed()
        orchestrator.tick()
        assert orchestrator.state.history[0].request.url == "http://api.test/ping"


class TestEditing:
    def test_escape_keeps_live_edits(self, orchestrator) -> None:
        press(orchestrator, "2", ENTER)
        assert orchestrator.state.input_mode == InputMode.EDITING
        assert orchestrator.state.editing_field == EditingField.URL

        type_text(orchestrator, "http://x")
        press(orchestrator, ESCAPE)

        assert orchestrator.state.input_mode == InputMode.NORMAL
        assert orchestrator.state.current_request.url == "http://x"

    def test_snapshot_is_captured(self, orchestrator) -> None:
        ready_request(orchestrator, "http://old")
        press(orchestrator, "2", "i")
        assert orchestrator.state.edit_snapshot == "http://old"
        assert orchestrator.state.cursor == len("http://old")

    def test_cursor_editing(self, orchestrator) -> None:
        ready_request(orchestrator, "http://xz")
        press(orchestrator, "2", ENTER, LEFT)
        type_text(orchestrator, "y")
        press(orchestrator, BACKSPACE, BACKSPACE)
        assert orchestrator.state.current_request.url == "http://z"

    def test_enter_on_url_leaves_editing(self, orchestrator) -> None:
        press(orchestrator, "2", ENTER)
        press(orchestrator, ENTER)
        assert orchestrator.state.input_mode == InputMode.NORMAL

    def test_header_tab_walks_key_then_value(self, orchestrator) -> None:
        orchestrator.state.current_request = ApiRequest(url="http://x", headers=[])
        press(orchestrator, "3", ENTER)
        type_text(orchestrator, "Accept")
        press(orchestrator, TAB)
        type_text(orchestrator, "text/plain")
        press(orchestrator, TAB)

        headers = orchestrator.state.current_request.headers
        assert headers[0] == KeyValue(key="Accept", value="text/plain")
        assert len(headers) == 2
        assert orchestrator.state.editing_field == EditingField.HEADER_KEY
        assert orchestrator.state.editing_index == 1

    def test_body_enter_inserts_newline(self, orchestrator) -> None:
        state = orchestrator.state
        state.current_request = ApiRequest(url="http://x", method=HTTPMethod.POST)
        state.focused_panel = FocusedPanel.REQUEST_EDITOR
        state.request_tab = RequestTab.BODY
        press(orchestrator, ENTER)
        type_text(orchestrator, "{")
        press(orchestrator, ENTER)
        type_text(orchestrator, "}")
        assert state.current_request.body == "{\n}"

    def test_auth_fields_need_an_auth_type(self, orchestrator) -> None:
        state = orchestrator.state
        state.focused_panel = FocusedPanel.REQUEST_EDITOR
        state.request_tab = RequestTab.AUTH
        press(orchestrator, ENTER)
        assert state.input_mode == InputMode.NORMAL
        assert state.status_message == "Select auth type first with 'a' key"

        press(orchestrator, "a", ENTER)
        assert state.current_request.auth.auth_type == AuthType.BEARER
        type_text(orchestrator, "T")
        assert state.current_request.auth.bearer_token == "T"

    def test_method_cycles(self, orchestrator) -> None:
        press(orchestrator, "2", "m")
        assert orchestrator.state.current_request.method == HTTPMethod.POST
        press(orchestrator, "M", "M")
        assert orchestrator.state.current_request.method == HTTPMethod.DELETE

    def test_format_body(self, orchestrator) -> None:
        state = orchestrator.state
        state.current_request = ApiRequest(body='{"a":1}')
        state.focused_panel = FocusedPanel.REQUEST_EDITOR
        state.request_tab = RequestTab.BODY
        press(orchestrator, "f")
        assert state.current_request.body == '{\n  "a": 1\n}'

        state.current_request.body = "{oops"
        press(orchestrator, "f")
        assert state.error_message.startswith("Invalid JSON")


class TestCollections:
    def test_loading_a_request_is_an_owned_copy(self, orchestrator, store) -> None:
        press(orchestrator, "j", ENTER)
        state = orchestrator.state
        assert state.focused_panel == FocusedPanel.URL_BAR
        assert state.current_request.name == "Get Users"

        state.current_request.url = "http://edited"
        stored = store.get_collection(state.source_collection_id).find_request(state.source_request_id)
        assert stored.url == "https://jsonplaceholder.typicode.com/users"

    def test_save_writes_back(self, orchestrator, store) -> None:
        press(orchestrator, "j", ENTER)
        state = orchestrator.state
        state.current_request.url = "http://edited"
        press(orchestrator, "W")

        assert state.status_message == "Request saved"
        stored = store.get_collection(state.source_collection_id).find_request(state.source_request_id)
        assert stored.url == "http://edited"

    def test_save_without_source(self, orchestrator) -> None:
        press(orchestrator, "W")
        assert "Request List" in orchestrator.state.error_message

    def test_create_collection_dialog(self, orchestrator, config) -> None:
        press(orchestrator, "C")
        type_text(orchestrator, "Payments")
        press(orchestrator, ENTER)

        state = orchestrator.state
        assert state.dialog is None
        created = next(c for c in state.collections if c.name == "Payments")
        assert (config.collections_dir / f"{created.id}.json").exists()
        assert state.selected_list_row().collection is created

    def test_empty_name_keeps_dialog_open(self, orchestrator) -> None:
        press(orchestrator, "C", ENTER)
        assert orchestrator.state.dialog is not None
        assert orchestrator.state.error_message == "Name cannot be empty"

    def test_create_request_in_folder(self, orchestrator) -> None:
        press(orchestrator, "F")
        type_text(orchestrator, "Admin")
        press(orchestrator, ENTER)
        row = orchestrator.state.selected_list_row()
        assert row.is_folder

        press(orchestrator, "r")
        type_text(orchestrator, "Audit")
        press(orchestrator, ENTER)
        row = orchestrator.state.selected_list_row()
        assert row.is_request
        assert row.node.parent_id is not None
        assert row.node.name == "Audit"

    def test_rename(self, orchestrator) -> None:
        press(orchestrator, "j", "R")
        assert orchestrator.state.dialog.input == "Get Users"
        press(orchestrator, *[BACKSPACE] * len("Users"))
        type_text(orchestrator, "People")
        press(orchestrator, ENTER)
        assert orchestrator.state.selected_list_row().node.name == "Get People"

    def test_delete_needs_confirmation(self, orchestrator, store) -> None:
        press(orchestrator, "j", "d")
        assert orchestrator.state.dialog is not None
        press(orchestrator, "n")
        assert len(orchestrator.state.collections[0].requests()) == 2

        press(orchestrator, "d", "y")
        collection = orchestrator.state.collections[0]
        assert [r.name for r in collection.requests()] == ["Create User"]
        assert [r.name for r in store.get_collection(collection.id).requests()] == ["Create User"]

    def test_deleting_loaded_request_clears_source(self, orchestrator) -> None:
        press(orchestrator, "j", ENTER, "1", "d", "y")
        assert orchestrator.state.source_request_id is None

    def test_delete_collection_removes_file(self, orchestrator, config) -> None:
        collection_id = orchestrator.state.collections[0].id
        press(orchestrator, "D", "y")
        assert orchestrator.state.collections == []
        assert not (config.collections_dir / f"{collection_id}.json").exists()

    def test_duplicate_gets_fresh_id(self, orchestrator) -> None:
        press(orchestrator, "j")
        original = orchestrator.state.selected_list_row().node
        press(orchestrator, "p")

        copy_row = orchestrator.state.selected_list_row()
        assert copy_row.node.name == "Get Users (copy)"
        assert copy_row.node.id != original.id
        assert copy_row.node.request.url == original.request.url

    def test_move_into_folder_keeps_id(self, orchestrator) -> None:
        state = orchestrator.state
        press(orchestrator, "F")
        type_text(orchestrator, "Folder")
        press(orchestrator, ENTER)
        folder_row = state.selected_row

        state.selected_row = 1
        request_id = state.selected_list_row().node.id
        press(orchestrator, "m")
        assert state.pending_move is not None

        state.selected_row = folder_row
        press(orchestrator, ENTER)

        collection = state.collections[0]
        assert state.pending_move is None
        assert collection.get(request_id).parent_id == collection.root[-1]
        assert state.status_message == "Moved: Get Users"

    def test_move_to_same_place(self, orchestrator) -> None:
        press(orchestrator, "j", "m", "j", ENTER)
        assert orchestrator.state.status_message == "Item already in this location"

    def test_escape_cancels_move(self, orchestrator) -> None:
        press(orchestrator, "j", "m", ESCAPE)
        assert orchestrator.state.pending_move is None

    def test_collapse_collection(self, orchestrator) -> None:
        assert len(orchestrator.state.visible_rows()) == 3
        press(orchestrator, ENTER)
        assert len(orchestrator.state.visible_rows()) == 1


class TestEnvironments:
    def _write_envs(self, config, active_index: int = 0):
        config.environments_file.write_text(
            '{"active_index": %d, "environments": ['
            '{"name": "dev", "variables": {"base_url": "http://dev"}},'
            '{"name": "prod", "variables": {"base_url": "https://prod"}}]}' % active_index,
            encoding="utf-8",
        )

    def test_cycle_wraps(self, orchestrator, config) -> None:
        self._write_envs(config)
        press(orchestrator, "E")
        environments = orchestrator.state.environments
        assert environments.active_name() == "dev"
        press(orchestrator, "e")
        assert environments.active_name() == "prod"
        press(orchestrator, "e")
        assert environments.active_name() == "dev"

    def test_reload_keeps_active_by_name(self, orchestrator, config) -> None:
        self._write_envs(config)
        press(orchestrator, "E", "e")
        press(orchestrator, "E")
        assert orchestrator.state.environments.active_name() == "prod"

    def test_malformed_reload_changes_nothing(self, orchestrator, config) -> None:
        before = orchestrator.state.environments.model_dump_json()
        config.environments_file.write_text('{"active_index": "x"', encoding="utf-8")

        press(orchestrator, "E")

        assert orchestrator.state.environments.model_dump_json() == before
        assert orchestrator.state.error_message.startswith("Failed to reload environments")


class TestResponseView:
    @pytest.fixture
    def with_response(self, orchestrator, dispatcher):
        ready_request(orchestrator)
        press(orchestrator, "s")
        dispatcher.handles[0].succeed(body=b'{"users": [{"name": "Ada"}, {"name": "Linus"}]}')
        orchestrator.tick()
        press(orchestrator, "4")
        return orchestrator

    def test_filter_applies(self, with_response) -> None:
        state = with_response.state
        press(with_response, "|")
        type_text(with_response, ".users[0].name")
        press(with_response, ENTER)

        assert state.response_mode == ResponseMode.NORMAL
        assert state.filter_result == '"Ada"'
        assert state.response_text() == '"Ada"'
        assert state.filter_history == [".users[0].name"]

    def test_filter_error_leaves_response(self, with_response) -> None:
        state = with_response.state
        response = state.response
        press(with_response, "|")
        type_text(with_response, ".users[")
        press(with_response, ENTER)

        assert state.filter_error.startswith("Parse error")
        assert state.response is response
        assert state.filter_result is None
        assert state.response_mode == ResponseMode.FILTER

    def test_injected_filter_failure(self, store, dispatcher) -> None:
        def broken(text, query):
            raise FilterError("nope")

        orchestrator = Orchestrator(store, dispatcher, clipboard=lambda text: None, filter_text=broken)
        ready_request(orchestrator)
        press(orchestrator, "s")
        dispatcher.handles[0].succeed()
        orchestrator.tick()
        press(orchestrator, "4", "|", ".", ENTER)
        assert orchestrator.state.filter_error == "nope"
        assert orchestrator.state.error_message is None

    def test_escape_clears_filter(self, with_response) -> None:
        press(with_response, "|")
        type_text(with_response, ".users")
        press(with_response, ENTER, ESCAPE)
        assert with_response.state.filter_result is None

    def test_search_finds_lines(self, with_response) -> None:
        state = with_response.state
        press(with_response, "/")
        type_text(with_response, "linus")
        press(with_response, ENTER)
        assert len(state.search_matches) == 1
        assert state.response_scroll == state.search_matches[0]

    def test_copy_response(self, with_response, clipboard) -> None:
        press(with_response, "c")
        assert clipboard == [with_response.state.response.pretty_body()]

    def test_copy_without_response(self, orchestrator) -> None:
        press(orchestrator, "4", "c")
        assert orchestrator.state.error_message == "No response to copy"


class TestMisc:
    def test_theme_cycle_persists(self, orchestrator, store) -> None:
        press(orchestrator, "T")
        assert orchestrator.state.theme == "Dracula"
        assert store.load_settings().theme == "Dracula"

    def test_copy_as_curl(self, orchestrator, clipboard) -> None:
        ready_request(orchestrator, "{{base_url}}/users")
        press(orchestrator, "y")
        assert clipboard == ["curl -H 'Content-Type: application/json' http://localhost:3000/users"]

    def test_help_closes_on_any_key(self, orchestrator) -> None:
        press(orchestrator, "?")
        assert orchestrator.state.show_help
        press(orchestrator, "q")
        assert not orchestrator.state.show_help
        assert not orchestrator.state.should_quit

    def test_quit(self, orchestrator) -> None:
        press(orchestrator, "q")
        assert orchestrator.state.should_quit

    def test_new_request_starts_editing_url(self, orchestrator) -> None:
        press(orchestrator, "n")
        assert orchestrator.state.focused_panel == FocusedPanel.URL_BAR
        assert orchestrator.state.editing_field == EditingField.URL

    def test_history_entry_loads_unsaved(self, orchestrator, dispatcher) -> None:
        press(orchestrator, "j", ENTER)
        press(orchestrator, "s")
        dispatcher.handles[0].succeed()
        orchestrator.tick()

        press(orchestrator, "H", ENTER)
        assert orchestrator.state.current_request.name == "Get Users"
        assert orchestrator.state.source_request_id is None

    def test_mouse_click_selects_row(self, orchestrator) -> None:
        orchestrator.state.focused_panel = FocusedPanel.RESPONSE_VIEW
        delta = orchestrator.handle_input(MouseEvent(MouseKind.CLICK, FocusedPanel.REQUEST_LIST, 2))
        assert delta.changed
        assert orchestrator.state.focused_panel == FocusedPanel.REQUEST_LIST
        assert orchestrator.state.selected_row == 2

    def test_mouse_scroll_response(self, orchestrator) -> None:
        orchestrator.handle_input(MouseEvent(MouseKind.SCROLL_DOWN, FocusedPanel.RESPONSE_VIEW))
        assert orchestrator.state.response_scroll == 3
        orchestrator.handle_input(MouseEvent(MouseKind.SCROLL_UP, FocusedPanel.RESPONSE_VIEW))
        assert orchestrator.state.response_scroll == 0
        assert not orchestrator.handle_input(MouseEvent(MouseKind.SCROLL_UP, FocusedPanel.RESPONSE_VIEW)).changed

    def test_clipboard_failure_is_folded_into_state(self, store, dispatcher) -> None:
        def clipboard(text):
            raise ClipboardError("Clipboard not supported on this platform")

        orchestrator = Orchestrator(store, dispatcher, clipboard=clipboard)
        delta = press(orchestrator, "y")
        assert delta.changed
        assert orchestrator.state.error_message == "Clipboard not supported on this platform"
