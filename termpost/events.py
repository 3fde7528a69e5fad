"""Input events fed to the orchestrator by the terminal host."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .state import FocusedPanel

# Named keys; everything else arrives as a printable character
ENTER = "enter"
ESCAPE = "escape"
TAB = "tab"
SHIFT_TAB = "shift+tab"
BACKSPACE = "backspace"
DELETE = "delete"
LEFT = "left"
RIGHT = "right"
UP = "up"
DOWN = "down"
HOME = "home"
END = "end"
SPACE = "space"
CTRL_C = "ctrl+c"
CTRL_S = "ctrl+s"


@dataclass(frozen=True)
class KeyEvent:
    key: str
    character: Optional[str] = None

    @classmethod
    def char(cls, character: str) -> "KeyEvent":
        return cls(key=SPACE if character == " " else character, character=character)

    @property
    def name(self) -> str:
        """Printable characters by themselves, named keys by name."""
        if self.character and len(self.character) == 1 and self.character.isprintable() and self.character != " ":
            return self.character
        return self.key

    @property
    def printable(self) -> Optional[str]:
        if self.character and len(self.character) == 1 and self.character.isprintable():
            return self.character
        return None


class MouseKind(str, Enum):
    CLICK = "click"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"


@dataclass(frozen=True)
class MouseEvent:
    """A pointer event already resolved to the panel (and list row) it hit."""
    kind: MouseKind
    panel: Optional[FocusedPanel] = None
    row: Optional[int] = None


@dataclass(frozen=True)
class StateDelta:
    changed: bool = True
    dispatched: bool = False


UNCHANGED = StateDelta(changed=False)
