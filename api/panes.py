"""
Pane visibility for the project page.

The project page has two panes: notes (left) and links (right). The stored
toggles record what the user asked for; ``resolve_panes`` turns them into
what is actually shown:

    desktop:      at least one pane, both when neither toggle is on
    non-desktop:  exactly one pane, notes first

The toggle handlers keep the stored state consistent with those rules, so the
renderer never has to re-derive exclusivity itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

TABLET_MIN_WIDTH = 480
DESKTOP_MIN_WIDTH = 768


class Viewport(str, Enum):
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"

    @classmethod
    def from_width(cls, width: int) -> "Viewport":
        if width >= DESKTOP_MIN_WIDTH:
            return cls.DESKTOP
        if width >= TABLET_MIN_WIDTH:
            return cls.TABLET
        return cls.MOBILE

    @property
    def is_desktop(self) -> bool:
        return self is Viewport.DESKTOP


@dataclass(frozen=True)
class PaneToggles:
    """Stored user intent, not display state."""

    left: bool = True
    right: bool = True


@dataclass(frozen=True)
class PaneVisibility:
    show_left: bool
    show_right: bool

    def to_dict(self) -> dict:
        return {"show_left": self.show_left, "show_right": self.show_right}


def resolve_panes(is_desktop: bool, left_toggle: bool, right_toggle: bool) -> PaneVisibility:
    if is_desktop:
        if not left_toggle and not right_toggle:
            return PaneVisibility(True, True)
        return PaneVisibility(left_toggle, right_toggle)

    if left_toggle == right_toggle:
        # neither or both: notes win
        return PaneVisibility(True, False)
    return PaneVisibility(left_toggle, right_toggle)


def toggle_notes(is_desktop: bool, toggles: PaneToggles) -> PaneToggles:
    if is_desktop:
        return PaneToggles(left=not toggles.left, right=toggles.right)
    return PaneToggles(left=True, right=False)


def toggle_links(is_desktop: bool, toggles: PaneToggles) -> PaneToggles:
    if is_desktop:
        return PaneToggles(left=toggles.left, right=not toggles.right)
    return PaneToggles(left=False, right=True)
