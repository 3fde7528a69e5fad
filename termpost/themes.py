"""Color themes for the terminal UI."""

from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class Theme:
    name: str
    accent: str
    border: str
    focused_border: str
    text: str
    muted: str
    success: str
    warning: str
    error: str
    selection: str


THEMES: Dict[str, Theme] = {
    theme.name: theme
    for theme in [
        Theme("Classic", "cyan", "grey50", "cyan", "white", "grey62", "green", "yellow", "red", "reverse"),
        Theme("Dracula", "#bd93f9", "#6272a4", "#ff79c6", "#f8f8f2", "#6272a4", "#50fa7b", "#f1fa8c", "#ff5555", "on #44475a"),
        Theme("Nord", "#88c0d0", "#4c566a", "#88c0d0", "#eceff4", "#4c566a", "#a3be8c", "#ebcb8b", "#bf616a", "on #3b4252"),
        Theme("Gruvbox", "#fabd2f", "#665c54", "#fe8019", "#ebdbb2", "#928374", "#b8bb26", "#fabd2f", "#fb4934", "on #504945"),
        Theme("Solarized", "#268bd2", "#586e75", "#2aa198", "#eee8d5", "#839496", "#859900", "#b58900", "#dc322f", "on #073642"),
    ]
}

THEME_NAMES: List[str] = list(THEMES)


def get_theme(name: str) -> Theme:
    return THEMES.get(name, THEMES["Classic"])


def next_theme(name: str) -> str:
    if name not in THEMES:
        return THEME_NAMES[0]
    return THEME_NAMES[(THEME_NAMES.index(name) + 1) % len(THEME_NAMES)]
