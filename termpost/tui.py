"""Textual host: feeds key/mouse events and a fixed-cadence tick into the orchestrator."""

import time
from typing import Optional

import structlog
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Static

from .config import Config
from .dispatcher import Dispatcher, HttpTransport
from .events import KeyEvent, MouseEvent, MouseKind
from .orchestrator import Orchestrator
from .render import (
    render_dialog,
    render_editor,
    render_help,
    render_request_list,
    render_response,
    render_status,
    render_url_bar,
    window_start,
)
from .state import FocusedPanel, RequestTab
from .storage import StorageBackend

logger = structlog.get_logger("termpost.tui")

# Rows taken by the panel border above the first content row
BORDER_ROWS = 1


class PanelView(Static):
    """A bordered panel that forwards pointer events to the app."""

    panel: FocusedPanel = FocusedPanel.REQUEST_LIST

    @property
    def panel_rows(self) -> int:
        return max(self.size.height - 2, 1)

    def content_row(self, y: int) -> Optional[int]:
        row = y - BORDER_ROWS
        return row if row >= 0 else None

    def on_click(self, event: events.Click):
        self.app.feed(MouseEvent(MouseKind.CLICK, self.panel, self.content_row(event.y)))

    def on_mouse_scroll_up(self, event: events.MouseScrollUp):
        self.app.feed(MouseEvent(MouseKind.SCROLL_UP, self.panel))

    def on_mouse_scroll_down(self, event: events.MouseScrollDown):
        self.app.feed(MouseEvent(MouseKind.SCROLL_DOWN, self.panel))


class RequestListView(PanelView):
    panel = FocusedPanel.REQUEST_LIST

    def content_row(self, y: int) -> Optional[int]:
        row = super().content_row(y)
        if row is None:
            return None
        state = self.app.orchestrator.state
        if state.show_history:
            start = window_start(len(state.history), state.selected_history, self.panel_rows)
        else:
            start = window_start(len(state.visible_rows()), state.selected_row, self.panel_rows)
        return start + row


class UrlBarView(PanelView):
    panel = FocusedPanel.URL_BAR


class EditorView(PanelView):
    panel = FocusedPanel.REQUEST_EDITOR

    def content_row(self, y: int) -> Optional[int]:
        # The tab strip occupies the first content row
        row = super().content_row(y)
        if row is None or row < 1:
            return None
        state = self.app.orchestrator.state
        if state.request_tab not in (RequestTab.HEADERS, RequestTab.PARAMS):
            return None
        return row - 1


class ResponseView(PanelView):
    panel = FocusedPanel.RESPONSE_VIEW


class TermpostApp(App, inherit_bindings=False):
    CSS = """
    Screen {
        layers: base overlay;
    }
    #sidebar {
        width: 32%;
    }
    #request-list {
        height: 1fr;
    }
    #url-bar {
        height: 3;
    }
    #editor {
        height: 2fr;
    }
    #response {
        height: 3fr;
    }
    #status {
        dock: bottom;
        height: 1;
    }
    #overlay {
        layer: overlay;
        margin: 4 12;
        height: auto;
        display: none;
    }
    """

    # Keys Textual also binds at screen level
    BINDINGS = [
        Binding("tab", "feed_key('tab')", show=False, priority=True),
        Binding("shift+tab", "feed_key('shift+tab')", show=False, priority=True),
        Binding("ctrl+c", "feed_key('ctrl+c')", show=False, priority=True),
    ]

    def __init__(self, config: Optional[Config] = None):
        super().__init__()
        self.config = config or Config.from_env()
        store = StorageBackend(self.config)
        transport = HttpTransport(timeout=self.config.request_timeout, verify=self.config.verify_tls)
        self.dispatcher = Dispatcher(transport)
        self.orchestrator = Orchestrator(store, self.dispatcher)

    def compose(self) -> ComposeResult:
        with Horizontal():
            with Vertical(id="sidebar"):
                yield RequestListView(id="request-list")
            with Vertical():
                yield UrlBarView(id="url-bar")
                yield EditorView(id="editor")
                yield ResponseView(id="response")
        yield Static(id="status")
        yield Static(id="overlay")

    def on_mount(self):
        self.set_interval(self.config.tick_interval, self.on_tick)
        self.call_after_refresh(self.refresh_view)
        logger.info("Session started", data_dir=str(self.config.data_dir))

    async def on_unmount(self):
        self.orchestrator.persist()
        await self.dispatcher.close()
        logger.info("Session ended")

    def feed(self, event):
        """Hand one input event to the orchestrator and redraw."""
        try:
            delta = self.orchestrator.handle_input(event)
        except Exception as e:
            logger.exception("Event handler raised", event=repr(event))
            self.orchestrator.state.error_message = f"Unexpected error: {e}"
        else:
            if not delta.changed:
                return
        if self.orchestrator.state.should_quit:
            self.exit()
            return
        self.refresh_view()

    def on_key(self, event: events.Key):
        event.prevent_default()
        event.stop()
        self.feed(KeyEvent(key=event.key, character=event.character))

    def action_feed_key(self, key: str):
        self.feed(KeyEvent(key=key))

    def on_tick(self):
        outcome = self.orchestrator.tick()
        if outcome is not None or self.orchestrator.state.pending is not None:
            self.refresh_view()

    def refresh_view(self):
        state = self.orchestrator.state
        now = time.monotonic()

        request_list = self.query_one("#request-list", RequestListView)
        request_list.update(render_request_list(state, request_list.panel_rows))
        self.query_one("#url-bar", UrlBarView).update(render_url_bar(state))
        editor = self.query_one("#editor", EditorView)
        editor.update(render_editor(state, editor.panel_rows - 1))
        response = self.query_one("#response", ResponseView)
        response.update(render_response(state, now, response.panel_rows))
        self.query_one("#status", Static).update(render_status(state))

        overlay = self.query_one("#overlay", Static)
        popup = render_help(state) if state.show_help else render_dialog(state)
        if popup is None:
            overlay.display = False
        else:
            overlay.update(popup)
            overlay.display = True


def run(config: Optional[Config] = None):
    TermpostApp(config).run()
