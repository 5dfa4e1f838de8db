from __future__ import annotations

from typing import Any, Callable

Listener = Callable[[bool], None]


class UiSession:
    """Keyboard-navigation mode owned by the top-level controller.

    Components receive the session explicitly instead of reading a global flag.
    """

    def __init__(self, keyboard_mode: bool = False) -> None:
        self._keyboard_mode = bool(keyboard_mode)
        self._listeners: list[Listener] = []

    @property
    def keyboard_mode(self) -> bool:
        return self._keyboard_mode

    def set_keyboard_mode(self, mode: bool) -> None:
        mode = bool(mode)
        if mode == self._keyboard_mode:
            return
        self._keyboard_mode = mode
        for listener in list(self._listeners):
            listener(mode)

    def toggle_keyboard_mode(self) -> bool:
        self.set_keyboard_mode(not self._keyboard_mode)
        return self._keyboard_mode

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def to_dict(self) -> dict[str, Any]:
        return {"keyboard_mode": self._keyboard_mode}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "UiSession":
        data = data if isinstance(data, dict) else {}
        return cls(keyboard_mode=bool(data.get("keyboard_mode", False)))
