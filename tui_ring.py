#!/usr/bin/env python3
# tui_ring.py
# Textual TUI for a Ring daemon reached over D-Bus: accounts, contacts,
# trust requests, text messages and calls.

from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Static
from textual.app import App, ComposeResult
from textual import events
from rich.text import Text
import sys
from datetime import datetime
from typing import Optional

from ring_bus import CONFIGURATION_IFACE, BusClient, BusError, RingConfig
from ring_controller import (
    ContactsView,
    Focus,
    InteractionController,
    Mode,
    Popup,
)
from ring_log import get_logger, setup_logger
from ring_state import SUBSCRIBED_MEMBERS, SignalDispatcher, StateManager

__version__ = "1.0.0"

# Redraw trigger only: notifications mutate the model on another thread,
# this timer makes them visible without a key press.
REDRAW_INTERVAL = 1.0

SELECTED = "reverse"
KEYWORD = "bold"

SPECIAL_KEYS = {"up", "down", "enter", "escape", "tab", "backspace", "space"}

log = get_logger("ui")


def normalize_key(key: str, character: Optional[str]) -> str:
    """Map a Textual key event onto controller key names ("" = no key)."""
    if key in SPECIAL_KEYS:
        return key
    if key == "shift+tab":
        return "tab"
    if character and len(character) == 1 and character.isprintable():
        return character
    return ""


def format_interaction(ts: datetime, body: str) -> str:
    return f"{ts.isoformat(timespec='seconds')}: {body}"


def _line(text: str, selected: bool = False) -> Text:
    return Text(text, style=SELECTED if selected else "")


# ======================= UI =======================


class TopBar(Static):
    """Highlighted help line for the current mode."""

    def __init__(self, app_ref: "RingApp"):
        super().__init__(id="top")
        self.app_ref = app_ref
        self._text = ""

    def refresh_bar(self, view: Optional[ContactsView]):
        text = self.app_ref.controller.help_text(view)
        if text != self._text:
            self._text = text
            self.update(Text(text, style=SELECTED))


class StatusBar(Static):
    def __init__(self, app_ref: "RingApp"):
        super().__init__(id="status")
        self.app_ref = app_ref

    def refresh_status(self):
        notice = self.app_ref.manager.last_notice
        text = f"ring-tui v{__version__}"
        if notice:
            text += f" | {notice}"
        self.update(text)


class AccountsPanel(Static):
    def __init__(self, app_ref: "RingApp"):
        super().__init__(id="accounts")
        self.app_ref = app_ref

    def build_text(self) -> Text:
        ctrl = self.app_ref.controller
        out = Text()
        out.append("RORI Accounts:\n\n", style=KEYWORD)
        for account in ctrl.accounts():
            box = "[x] " if account.enabled else "[ ] "
            focused = ctrl.mode is Mode.ACCOUNTS and account.id == ctrl.current_account
            out.append_text(_line(f"{box}{account.alias} ({account.ring_id})", focused))
            out.append("\n")
        return out

    def refresh_accounts(self):
        self.update(self.build_text())


class ContactsPanel(Static):
    def __init__(self, app_ref: "RingApp"):
        super().__init__(id="contacts")
        self.app_ref = app_ref

    def refresh_contacts(self, view: Optional[ContactsView]):
        ctrl = self.app_ref.controller
        if view is None:
            self.update("")
            return
        out = Text()
        if view.requests:
            out.append("Requests:\n\n", style=KEYWORD)
            for contact in view.requests:
                out.append_text(_line(contact, contact == ctrl.current_contact))
                out.append("\n")
            out.append("\n")
        out.append("Contacts:\n\n", style=KEYWORD)
        for contact in view.contacts:
            out.append_text(_line(contact, contact == ctrl.current_contact))
            out.append("\n")
        self.update(out)


class InteractionsPanel(Static):
    def __init__(self, app_ref: "RingApp"):
        super().__init__(id="interactions")
        self.app_ref = app_ref

    def refresh_interactions(self):
        rows = self.app_ref.controller.interactions()
        lines = [format_interaction(i.timestamp, i.body) for i in rows]
        self.update("\n".join(lines))


class PopupPanel(Static):
    """Centered form for the add/import/contact/message modes."""

    def __init__(self, app_ref: "RingApp"):
        super().__init__(id="popup")
        self.app_ref = app_ref

    def refresh_popup(self):
        popup = self.app_ref.controller.popup
        self.display = popup is not None
        if popup is not None:
            self.update(self.build_text(popup))

    def build_text(self, popup: Popup) -> Text:
        out = Text(justify="left")
        out.append(f"{popup.title}\n\n", style=KEYWORD)
        width = max(len(label) for label in popup.labels)
        for idx, label in enumerate(popup.labels):
            value = popup.values[idx]
            if idx == 1:
                value = "*" * len(value)  # password
            out.append(f"{label:<{width}}  ")
            focused = popup.field_index() == idx
            out.append(f"{value:<24}", style="underline reverse" if focused else "underline")
            out.append("\n\n")
        out.append_text(_line("< OK >", popup.focus is Focus.OK))
        out.append("    ")
        out.append_text(_line("< Cancel >", popup.focus is Focus.CANCEL))
        return out


class RingApp(App):
    CSS = """
    Screen { layout: vertical; }
    #top { height: 1; background: $panel; }
    #status { height: 1; background: $panel; }
    #main { height: 1fr; }
    #accounts { width: 1fr; border: round $accent; padding: 1 1; }
    #contacts { width: 1fr; border: round $accent; padding: 1 1; }
    #interactions { width: 1fr; border: round $accent; padding: 1 1; }
    #popup { height: 1fr; border: round $accent; padding: 2 4; }
    """
    # Tab/escape must reach the controller before Textual's focus bindings
    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit", show=False, priority=True),
        Binding("tab", "controller_key('tab')", show=False, priority=True),
        Binding("escape", "controller_key('escape')", show=False, priority=True),
    ]

    def __init__(self, manager: StateManager, controller: Optional[InteractionController] = None,
                 dispatcher: Optional[SignalDispatcher] = None):
        super().__init__()
        self.manager = manager
        self.controller = controller or InteractionController(manager)
        self.dispatcher = dispatcher
        self.topbar = TopBar(self)
        self.accounts_panel = AccountsPanel(self)
        self.contacts_panel = ContactsPanel(self)
        self.interactions_panel = InteractionsPanel(self)
        self.popup_panel = PopupPanel(self)
        self.statusbar = StatusBar(self)

    # Safety override even if framework provides a palette:
    def action_command_palette(self):  # type: ignore[override]
        pass

    def compose(self) -> ComposeResult:
        yield self.topbar
        with Horizontal(id="main") as main:
            self.main = main
            with Vertical():
                yield self.accounts_panel
            with Vertical():
                yield self.contacts_panel
            with Vertical():
                yield self.interactions_panel
        yield self.popup_panel
        yield self.statusbar

    def on_mount(self):
        self.refresh_all()
        self.set_interval(REDRAW_INTERVAL, self.refresh_all)

    def refresh_all(self):
        ctrl = self.controller
        # popups replace the columns, like a modal window
        if ctrl.popup is not None:
            self.main.display = False
            self.topbar.refresh_bar(None)
            self.popup_panel.refresh_popup()
            self.statusbar.refresh_status()
            return
        self.main.display = True
        view = ctrl.sync()
        self.topbar.refresh_bar(view)
        self.accounts_panel.refresh_accounts()
        self.contacts_panel.refresh_contacts(view)
        self.interactions_panel.refresh_interactions()
        self.popup_panel.refresh_popup()
        self.statusbar.refresh_status()

    def _dispatch(self, key: str):
        if not self.controller.handle_key(key):
            self.exit()
            return
        self.refresh_all()

    def action_controller_key(self, key: str) -> None:
        self._dispatch(key)

    def on_key(self, event: events.Key) -> None:
        key = normalize_key(event.key, event.character)
        if not key:
            return
        event.prevent_default()
        event.stop()
        # RPCs triggered here block the UI thread only; the dispatcher keeps running
        self._dispatch(key)

    def on_unmount(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.stop(timeout=2.0)


# ======================= Entrypoint =======================


def build(config: RingConfig):
    """Connect, load accounts and start the signal thread; raises BusError."""
    bus = BusClient.connect(config)
    manager = StateManager(bus)
    subscription = bus.subscribe(CONFIGURATION_IFACE, SUBSCRIBED_MEMBERS)
    dispatcher = SignalDispatcher(manager, subscription)
    dispatcher.start()
    return bus, manager, dispatcher


def main() -> int:
    setup_logger()
    config = RingConfig.from_env()
    try:
        bus, manager, dispatcher = build(config)
    except BusError as e:
        log.critical("cannot initialize: %s", e)
        print(f"ring-tui: can't reach the Ring daemon ({e})", file=sys.stderr)
        return 1
    app = RingApp(manager, dispatcher=dispatcher)
    try:
        app.run()
    finally:
        dispatcher.stop(timeout=2.0)
        dispatcher.subscription.close()
        bus.close()
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        pass
