#!/usr/bin/env python3
# ring_controller.py
# Modal key-driven state machine behind the Ring terminal client.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ring_log import get_logger
from ring_state import Account, Interaction, StateManager

log = get_logger("ui")

# ======================= Modes & focus =======================


class Mode(Enum):
    ACCOUNTS = "accounts"
    CONTACTS = "contacts"
    ADD_ACCOUNT = "add_account"
    IMPORT_ACCOUNT = "import_account"
    ADD_CONTACT = "add_contact"
    SEND_INTERACTION = "send_interaction"

    @property
    def is_popup(self) -> bool:
        return self in POPUP_PARENT


class Focus(Enum):
    FIELD1 = "field1"
    FIELD2 = "field2"
    OK = "ok"
    CANCEL = "cancel"


POPUP_PARENT = {
    Mode.ADD_ACCOUNT: Mode.ACCOUNTS,
    Mode.IMPORT_ACCOUNT: Mode.ACCOUNTS,
    Mode.ADD_CONTACT: Mode.CONTACTS,
    Mode.SEND_INTERACTION: Mode.CONTACTS,
}

POPUP_TITLES = {
    Mode.ADD_ACCOUNT: "Add new RING account",
    Mode.IMPORT_ACCOUNT: "Add new RING account",
    Mode.ADD_CONTACT: "Add new contact",
    Mode.SEND_INTERACTION: "Send message",
}

POPUP_LABELS = {
    Mode.ADD_ACCOUNT: ("Username:", "Password:"),
    Mode.IMPORT_ACCOUNT: ("Path:", "Password:"),
    Mode.ADD_CONTACT: ("Id:",),
    Mode.SEND_INTERACTION: ("Message:",),
}

ACCOUNTS_HELP = "ESC: quit | A: Add | R: Remove | SPACE: Enable | I: Import | Enter: Select"
REQUEST_HELP = "ESC: return | A: Accept | R: Discard | B: Ban"
CONTACT_HELP = "ESC: return | A: Add | R: Remove | B: Ban | W: Send message | C: Call"


@dataclass
class Popup:
    mode: Mode
    values: List[str]
    focus: Focus = Focus.FIELD1

    @classmethod
    def open(cls, mode: Mode) -> "Popup":
        return cls(mode=mode, values=["" for _ in POPUP_LABELS[mode]])

    @property
    def title(self) -> str:
        return POPUP_TITLES[self.mode]

    @property
    def labels(self) -> tuple:
        return POPUP_LABELS[self.mode]

    def focus_order(self) -> List[Focus]:
        fields = [Focus.FIELD1, Focus.FIELD2][: len(self.values)]
        return fields + [Focus.OK, Focus.CANCEL]

    def cycle(self):
        order = self.focus_order()
        self.focus = order[(order.index(self.focus) + 1) % len(order)]

    def field_index(self) -> Optional[int]:
        if self.focus is Focus.FIELD1:
            return 0
        if self.focus is Focus.FIELD2 and len(self.values) > 1:
            return 1
        return None


@dataclass
class ContactsView:
    requests: List[str] = field(default_factory=list)
    contacts: List[str] = field(default_factory=list)

    def ordered(self, forward: bool = True) -> List[str]:
        if forward:
            return self.requests + self.contacts
        return list(reversed(self.contacts)) + list(reversed(self.requests))


def next_entry(entries: List[str], current: str) -> str:
    """Entry following ``current``; unchanged if absent or already last."""
    select = False
    for entry in entries:
        if select:
            return entry
        if entry == current:
            select = True
    return current


# ======================= Controller =======================


class InteractionController:
    """Translates normalized keys into navigation or StateManager calls.

    Keys are Textual-style names: "up", "down", "enter", "escape", "tab",
    "backspace", "space", or the printable character itself. An empty key is
    the no-key sentinel and does nothing.
    """

    def __init__(self, manager: StateManager):
        self.manager = manager
        self.mode = Mode.ACCOUNTS
        self.current_account = ""
        self.current_contact = ""
        self.popup: Optional[Popup] = None
        self.running = True

    # ---- views (copies, never live references) ----

    def accounts(self) -> List[Account]:
        return self.manager.accounts()

    def contacts_view(self) -> ContactsView:
        if not self.current_account:
            return ContactsView()
        return ContactsView(
            requests=self.manager.get_pending_requests(self.current_account),
            contacts=self.manager.get_contacts(self.current_account),
        )

    def interactions(self) -> List[Interaction]:
        if self.mode is not Mode.CONTACTS or not self.current_contact:
            return []
        return self.manager.interactions(self.current_account, self.current_contact)

    def help_text(self, view: Optional[ContactsView] = None) -> str:
        if self.mode is Mode.ACCOUNTS:
            return ACCOUNTS_HELP
        if self.mode is Mode.CONTACTS:
            view = view if view is not None else self.contacts_view()
            if self.current_contact in view.requests:
                return REQUEST_HELP
            return CONTACT_HELP
        return "TAB: next | Enter: confirm | ESC: cancel"

    def sync(self, view: Optional[ContactsView] = None) -> Optional[ContactsView]:
        """Give focus to the first entry when nothing is focused."""
        if self.mode is Mode.ACCOUNTS and not self.current_account:
            accounts = self.accounts()
            if accounts:
                self.current_account = accounts[0].id
        if self.mode is Mode.CONTACTS:
            view = view if view is not None else self.contacts_view()
            if not self.current_contact:
                entries = view.ordered()
                if entries:
                    self.current_contact = entries[0]
            return view
        return view

    # ---- input ----

    def handle_key(self, key: str) -> bool:
        """Apply one key; returns False once the user asked to quit."""
        if not key:
            return self.running
        if self.popup is not None:
            self._popup_key(key)
        elif self.mode is Mode.ACCOUNTS:
            self._accounts_key(key)
        elif self.mode is Mode.CONTACTS:
            self._contacts_key(key)
        return self.running

    def _open(self, mode: Mode):
        self.mode = mode
        self.popup = Popup.open(mode)

    def _accounts_key(self, key: str):
        lowered = key.lower() if len(key) == 1 else key
        if key in ("up", "down"):
            ids = [a.id for a in self.accounts()]
            if key == "up":
                ids.reverse()
            self.current_account = next_entry(ids, self.current_account)
        elif key == "space" or key == " ":
            account = self.manager.find_account(self.current_account)
            if account is not None:
                self.manager.set_account_enabled(account.id, not account.enabled)
        elif key == "enter":
            if self.current_account:
                self.mode = Mode.CONTACTS
                self.current_contact = ""
        elif key == "escape":
            self.running = False
        elif lowered == "a":
            self._open(Mode.ADD_ACCOUNT)
        elif lowered == "i":
            self._open(Mode.IMPORT_ACCOUNT)
        elif lowered == "r":
            if self.current_account:
                self.manager.remove_account(self.current_account)
            self.current_account = ""

    def _contacts_key(self, key: str):
        lowered = key.lower() if len(key) == 1 else key
        if key == "escape":
            self.current_contact = ""
            self.mode = Mode.ACCOUNTS
            return
        view = self.contacts_view()
        is_request = bool(self.current_contact) and self.current_contact in view.requests
        if key in ("up", "down"):
            self.current_contact = next_entry(view.ordered(key == "down"), self.current_contact)
        elif lowered == "r":
            if is_request:
                self.manager.respond_to_request(self.current_account, self.current_contact, False)
            elif self.current_contact:
                self.manager.remove_contact(self.current_account, self.current_contact, False)
            self.current_contact = ""
        elif lowered == "b":
            if self.current_contact:
                self.manager.remove_contact(self.current_account, self.current_contact, True)
            self.current_contact = ""
        elif lowered == "a":
            if is_request:
                self.manager.respond_to_request(self.current_account, self.current_contact, True)
            else:
                self._open(Mode.ADD_CONTACT)
        elif lowered == "w":
            if self.current_contact and not is_request:
                self._open(Mode.SEND_INTERACTION)
        elif lowered == "c":
            if self.current_contact:
                self.manager.place_call(self.current_account, self.current_contact)

    def _close_popup(self):
        popup = self.popup
        self.popup = None
        self.mode = POPUP_PARENT[popup.mode] if popup else Mode.ACCOUNTS

    def _submit(self, popup: Popup):
        if popup.mode is Mode.ADD_ACCOUNT:
            self.manager.add_account(popup.values[0], popup.values[1], False)
        elif popup.mode is Mode.IMPORT_ACCOUNT:
            self.manager.add_account(popup.values[0], popup.values[1], True)
        elif popup.mode is Mode.ADD_CONTACT:
            self.manager.add_contact(self.current_account, popup.values[0])
        elif popup.mode is Mode.SEND_INTERACTION:
            self.manager.send_text(self.current_account, self.current_contact, popup.values[0])

    def _popup_key(self, key: str):
        popup = self.popup
        if key == "escape":
            self._close_popup()
        elif key == "tab":
            popup.cycle()
        elif key == "enter":
            if popup.focus is Focus.OK:
                self._submit(popup)
                self._close_popup()
            elif popup.focus is Focus.CANCEL:
                self._close_popup()
        elif key == "backspace":
            idx = popup.field_index()
            if idx is not None:
                popup.values[idx] = popup.values[idx][:-1]
        else:
            char = " " if key == "space" else key
            idx = popup.field_index()
            if idx is not None and len(char) == 1 and char.isprintable():
                popup.values[idx] += char
