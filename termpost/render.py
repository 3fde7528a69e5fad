"""Read-only rendering of the session state into rich renderables."""

import re
from typing import List, Optional, Tuple

from rich.console import Group, RenderableType
from rich.errors import StyleSyntaxError
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text

from .models import ApiKeyLocation, AuthType, HTTPMethod
from .state import (
    EditingField,
    FocusedPanel,
    InputMode,
    RequestTab,
    ResponseMode,
    SessionState,
)
from .themes import Theme, get_theme

SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

METHOD_STYLES = {
    HTTPMethod.GET: "bold green",
    HTTPMethod.POST: "bold yellow",
    HTTPMethod.PUT: "bold blue",
    HTTPMethod.PATCH: "bold magenta",
    HTTPMethod.DELETE: "bold red",
    HTTPMethod.HEAD: "bold cyan",
    HTTPMethod.OPTIONS: "bold white",
}


def _panel(body: RenderableType, title: str, focused: bool, theme: Theme, subtitle: Optional[str] = None) -> Panel:
    return Panel(
        body,
        title=title,
        title_align="left",
        subtitle=subtitle,
        subtitle_align="right",
        border_style=theme.focused_border if focused else theme.border,
    )


def window_start(total: int, selected: int, height: int) -> int:
    """First visible row so that ``selected`` stays on screen."""
    if height <= 0 or total <= height:
        return 0
    return max(0, min(selected - height + 1, total - height))


def with_cursor(text: str, cursor: int, style: str = "reverse") -> Text:
    cursor = min(cursor, len(text))
    rendered = Text(text[:cursor])
    under = text[cursor:cursor + 1]
    if not under or under == "\n":
        rendered.append(" ", style=style)
        rendered.append(under)
    else:
        rendered.append(under, style=style)
    rendered.append(text[cursor + 1:])
    return rendered


def _editing(state: SessionState, field_: EditingField, index: int = 0) -> bool:
    return (
        state.input_mode == InputMode.EDITING
        and state.editing_field == field_
        and (not field_.is_indexed or state.editing_index == index)
    )


def _field(state: SessionState, field_: EditingField, value: str, index: int = 0, placeholder: str = "") -> Text:
    if _editing(state, field_, index):
        return with_cursor(value, state.cursor)
    if not value and placeholder:
        return Text(placeholder, style="dim")
    return Text(value)


# Request list


def render_request_list(state: SessionState, height: int = 30) -> Panel:
    theme = get_theme(state.theme)
    focused = state.focused_panel == FocusedPanel.REQUEST_LIST
    if state.show_history:
        return _panel(_history_body(state, theme, height), "[1] History", focused, theme)

    rows = state.visible_rows()
    body = Text()
    if not rows:
        body.append("No collections. Press C to create one.", style="dim")
    start = window_start(len(rows), state.selected_row, height)
    for index, row in enumerate(rows[start:start + height], start=start):
        line = Text()
        if row.is_header:
            marker = "▼" if row.collection.expanded else "▶"
            line.append(f"{marker} {row.collection.name}", style=f"bold {theme.accent}")
        else:
            line.append("  " * (row.depth + 1))
            if row.is_folder:
                marker = "▾" if row.node.expanded else "▸"
                line.append(f"{marker} {row.node.name}", style=theme.text)
            else:
                method = row.node.request.method
                line.append(f"{method.value:<6} ", style=METHOD_STYLES[method])
                line.append(row.node.name, style=theme.text)
        if state.pending_move is not None and row.node is not None and row.node.id == state.pending_move.node_id:
            line.append("  (moving)", style=theme.warning)
        if index == state.selected_row and focused:
            line.stylize(theme.selection)
        body.append_text(line)
        body.append("\n")

    title = "[1] Collections"
    if state.pending_move is not None:
        title += f" - moving {state.pending_move.name}"
    return _panel(body, title, focused, theme)


def _history_body(state: SessionState, theme: Theme, height: int) -> Text:
    body = Text()
    if not state.history:
        body.append("No requests sent yet.", style="dim")
        return body
    start = window_start(len(state.history), state.selected_history, height)
    for index, entry in enumerate(state.history[start:start + height], start=start):
        line = Text()
        if entry.status_code is None:
            status_style = theme.error
        elif entry.status_code < 400:
            status_style = theme.success
        else:
            status_style = theme.warning
        line.append(f"{entry.request.method.value:<6} ", style=METHOD_STYLES[entry.request.method])
        line.append(entry.request.url or entry.request.name)
        line.append(f"  {entry.status_code or 'ERR'}", style=status_style)
        line.append(f"  {entry.duration_ms}ms", style=theme.muted)
        if index == state.selected_history:
            line.stylize(theme.selection)
        body.append_text(line)
        body.append("\n")
    return body


# URL bar


def render_url_bar(state: SessionState) -> Panel:
    theme = get_theme(state.theme)
    request = state.current_request
    line = Text()
    line.append(f" {request.method.value} ", style=f"reverse {METHOD_STYLES[request.method]}")
    line.append(" ")
    line.append_text(_field(state, EditingField.URL, request.url, placeholder="Enter URL (press Enter to edit)"))

    env = state.environments.active()
    subtitle = f"env: {env.name}" if env else "env: none"
    title = f"[2] {request.name}"
    if state.source_request_id is None:
        title += " (unsaved)"
    return _panel(line, title, state.focused_panel == FocusedPanel.URL_BAR, theme, subtitle)


# Request editor


def render_editor(state: SessionState, height: int = 12) -> Panel:
    theme = get_theme(state.theme)
    tabs = Text()
    for tab in RequestTab:
        style = f"bold {theme.accent} underline" if tab == state.request_tab else theme.muted
        tabs.append(f" {tab.value} ", style=style)
        tabs.append("│", style=theme.border)

    if state.request_tab == RequestTab.HEADERS:
        content = _pairs_table(state, theme, state.current_request.headers, state.selected_header,
                               EditingField.HEADER_KEY, EditingField.HEADER_VALUE)
    elif state.request_tab == RequestTab.PARAMS:
        content = _pairs_table(state, theme, state.current_request.query_params, state.selected_param,
                               EditingField.PARAM_KEY, EditingField.PARAM_VALUE)
    elif state.request_tab == RequestTab.BODY:
        content = _body_view(state, theme, height)
    else:
        content = _auth_view(state, theme)

    focused = state.focused_panel == FocusedPanel.REQUEST_EDITOR
    return _panel(Group(tabs, content), "[3] Request", focused, theme)


def _pairs_table(state, theme, rows, selected, key_field, value_field) -> RenderableType:
    if not rows:
        return Text("Nothing here yet. Press Enter to add one.", style="dim")
    table = Table(box=None, show_header=False, padding=(0, 1), expand=True)
    table.add_column(width=3)
    table.add_column(ratio=1)
    table.add_column(ratio=2)
    focused = state.focused_panel == FocusedPanel.REQUEST_EDITOR
    for index, pair in enumerate(rows):
        check = Text("[x]" if pair.enabled else "[ ]", style=theme.success if pair.enabled else theme.muted)
        key = _field(state, key_field, pair.key, index, placeholder="key")
        value = _field(state, value_field, pair.value, index, placeholder="value")
        style = theme.selection if index == selected and focused else None
        if not pair.enabled:
            key.stylize("dim strike")
            value.stylize("dim strike")
        table.add_row(check, key, value, style=style)
    return table


def _body_view(state: SessionState, theme: Theme, height: int) -> RenderableType:
    body = state.current_request.body
    if _editing(state, EditingField.BODY):
        text = with_cursor(body, state.cursor)
    elif not body:
        return Text("Empty body. Press Enter to edit, f to format JSON.", style="dim")
    else:
        text = Text(body)
    lines = text.split("\n", allow_blank=True)
    visible = lines[state.body_scroll:state.body_scroll + max(height, 1)]
    return Group(*visible)


def _auth_view(state: SessionState, theme: Theme) -> RenderableType:
    auth = state.current_request.auth
    table = Table(box=None, show_header=False, padding=(0, 1))
    table.add_column(style=theme.muted)
    table.add_column()
    table.add_row("Type", Text(f"{auth.auth_type.label}  (a to cycle)", style=theme.accent))

    if auth.auth_type == AuthType.BEARER:
        table.add_row("Token", _field(state, EditingField.BEARER_TOKEN, auth.bearer_token, placeholder="{{token}}"))
    elif auth.auth_type == AuthType.BASIC:
        table.add_row("Username", _field(state, EditingField.BASIC_USERNAME, auth.basic_username))
        password = auth.basic_password
        if not _editing(state, EditingField.BASIC_PASSWORD):
            password = "•" * len(password)
        table.add_row("Password", _field(state, EditingField.BASIC_PASSWORD, password))
    elif auth.auth_type == AuthType.API_KEY:
        table.add_row("Key name", _field(state, EditingField.API_KEY_NAME, auth.api_key_name, placeholder="X-API-Key"))
        table.add_row("Key value", _field(state, EditingField.API_KEY_VALUE, auth.api_key_value))
        location = "Header" if auth.api_key_location == ApiKeyLocation.HEADER else "Query param"
        table.add_row("Send as", Text(f"{location}  (L to toggle)"))
    else:
        table.add_row("", Text("No authentication", style="dim"))
    return table


# Response view


def spinner_frame(elapsed: float) -> str:
    return SPINNER_FRAMES[int(elapsed * 10) % len(SPINNER_FRAMES)]


def render_response(state: SessionState, now: float, height: int = 20) -> Panel:
    theme = get_theme(state.theme)
    focused = state.focused_panel == FocusedPanel.RESPONSE_VIEW
    parts: List[RenderableType] = []
    subtitle = None

    if state.pending is not None:
        elapsed = now - state.pending.started_at
        parts.append(Text(f"{spinner_frame(elapsed)} Sending request... {elapsed:.1f}s", style=theme.warning))
    elif state.response_error is not None:
        parts.append(Text(f"Error: {state.response_error}", style=theme.error))
    elif state.response is None:
        parts.append(Text("Press s to send the request.", style="dim"))
    else:
        response = state.response
        status_style = theme.success if response.is_success else (theme.warning if response.status < 500 else theme.error)
        summary = Text()
        summary.append(f"{response.status} {response.status_text}", style=f"bold {status_style}")
        summary.append(f"  {response.elapsed_ms}ms  {_size(response.size_bytes)}", style=theme.muted)
        if state.filter_query:
            summary.append(f"  filter: {state.filter_query}", style=theme.accent)
        parts.append(summary)

        body_height = max(height - 2, 1)
        lines = state.response_text().splitlines()
        visible = lines[state.response_scroll:state.response_scroll + body_height]
        body = Text("\n".join(visible))
        if state.search_query:
            body.highlight_regex(re.compile(re.escape(state.search_query), re.IGNORECASE), "black on yellow")
        parts.append(body)
        if state.search_matches:
            subtitle = f"match {state.search_index + 1}/{len(state.search_matches)}"

    prompt = _prompt_line(state, theme)
    if prompt is not None:
        parts.append(prompt)
    if state.filter_error:
        parts.append(Text(state.filter_error, style=theme.error))

    return _panel(Group(*parts), "[4] Response", focused, theme, subtitle)


def _prompt_line(state: SessionState, theme: Theme) -> Optional[Text]:
    if state.response_mode == ResponseMode.SEARCH:
        line = Text("/", style=theme.accent)
        line.append_text(with_cursor(state.search_input, len(state.search_input)))
        return line
    if state.response_mode == ResponseMode.FILTER:
        line = Text("jq ", style=theme.accent)
        line.append_text(with_cursor(state.filter_input, len(state.filter_input)))
        if state.filter_history:
            line.append(f"  (↑/↓ history: {len(state.filter_history)})", style=theme.muted)
        return line
    return None


def _size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


# Status bar and overlays


def render_status(state: SessionState) -> Text:
    theme = get_theme(state.theme)
    line = Text()
    mode = "EDIT" if state.input_mode == InputMode.EDITING else "NORMAL"
    line.append(f" {mode} ", style=f"reverse {theme.accent}")
    env = state.environments.active()
    line.append(f" {env.name if env else 'no env'} ", style=_color(env.color if env else None, theme.muted))
    if state.error_message:
        line.append(f" {state.error_message}", style=f"bold {theme.error}")
    elif state.status_message:
        line.append(f" {state.status_message}", style=theme.text)
    line.append("   ? help", style=theme.muted)
    return line


def help_entries(state: SessionState) -> List[Tuple[str, str]]:
    entries = [
        ("", "Global"),
        ("1-4", "Jump to panel"),
        ("Tab / Shift+Tab", "Next / previous panel"),
        ("s", "Send request"),
        ("e / E", "Switch / reload environments"),
        ("n", "New request"),
        ("W / Ctrl+s", "Save request to collection"),
        ("y", "Copy as curl"),
        ("H", "Toggle history"),
        ("T", "Cycle theme"),
        ("?", "Toggle help"),
        ("q / Ctrl+c", "Quit"),
    ]
    if state.input_mode == InputMode.EDITING:
        entries += [
            ("", "Editing"),
            ("Esc", "Exit edit mode (edits are kept)"),
            ("Tab", "Next field"),
            ("Enter", "Next field / new line in body"),
        ]
        return entries

    panel = state.focused_panel
    if panel == FocusedPanel.REQUEST_LIST:
        entries += [
            ("", "Request list"),
            ("j / k", "Move down / up"),
            ("Enter", "Load request / toggle folder"),
            ("Space", "Expand / collapse"),
            ("C / F / r", "New collection / folder / request"),
            ("R", "Rename"),
            ("d / D", "Delete item / collection"),
            ("p", "Duplicate request"),
            ("m", "Move item (Enter to drop, Esc to cancel)"),
        ]
    elif panel == FocusedPanel.URL_BAR:
        entries += [("", "URL bar"), ("Enter / i", "Edit URL"), ("m / M", "Cycle HTTP method")]
    elif panel == FocusedPanel.REQUEST_EDITOR:
        entries += [
            ("", "Request editor"),
            ("h / l", "Previous / next tab"),
            ("Enter / i", "Edit current tab"),
            ("j / k", "Select row / scroll body"),
            ("t / x", "Toggle / delete row"),
            ("a / L", "Cycle auth type / API key location"),
            ("f", "Format JSON body"),
        ]
    else:
        entries += [
            ("", "Response"),
            ("j / k", "Scroll"),
            ("/", "Search; n / N next / previous match"),
            ("|", "jq filter; Esc clears"),
            ("c", "Copy response"),
        ]
    return entries


def render_help(state: SessionState) -> Panel:
    theme = get_theme(state.theme)
    table = Table(box=None, show_header=False, padding=(0, 2))
    table.add_column(style=f"bold {theme.accent}")
    table.add_column()
    for key, description in help_entries(state):
        if not key:
            table.add_row(Text(f"── {description} ──", style=theme.muted), "")
        else:
            table.add_row(key, description)
    return Panel(table, title="Help", border_style=theme.focused_border)


def render_dialog(state: SessionState) -> Optional[Panel]:
    dialog = state.dialog
    if dialog is None:
        return None
    theme = get_theme(state.theme)
    if dialog.dialog_type.is_confirmation:
        body = Text(dialog.prompt, style=theme.warning)
    else:
        body = Text(f"{dialog.prompt}: ", style=theme.muted)
        body.append_text(with_cursor(dialog.input, len(dialog.input)))
    return Panel(body, title=dialog.dialog_type.title, border_style=theme.focused_border)


def _color(color: Optional[str], fallback: str) -> str:
    """User-supplied colors come from environments.json and may not parse."""
    if not color:
        return fallback
    try:
        Style.parse(color)
    except StyleSyntaxError:
        return fallback
    return color
