from __future__ import annotations

import unittest

from ring_controller import (
    ACCOUNTS_HELP,
    CONTACT_HELP,
    REQUEST_HELP,
    ContactsView,
    Focus,
    InteractionController,
    Mode,
    next_entry,
)
from ring_state import StateManager

from tests.helpers import FakeBus, notification, ring_daemon


ACCOUNTS = {
    "a1": {"Account.alias": "Alice", "Account.username": "ring:1", "Account.enable": "true"},
    "a2": {"Account.alias": "Bob", "Account.username": "ring:2", "Account.enable": "false"},
    "a3": {"Account.alias": "Carol", "Account.username": "ring:3", "Account.enable": "true"},
}


def _type(ctrl: InteractionController, text: str) -> None:
    for ch in text:
        ctrl.handle_key(ch)


class ControllerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        replies = ring_daemon(ACCOUNTS)
        replies.update(
            {
                "getTrustRequests": ([{"from": "b2"}, {"from": "b3"}],),
                "getContacts": ([{"id": "c1"}, {"id": "c2"}],),
                "addAccount": ("new",),
                "sendTextMessage": (7,),
                "placeCall": ("call",),
                "acceptTrustRequest": (True,),
                "discardTrustRequest": (True,),
            }
        )
        self.bus = FakeBus(replies)
        self.manager = StateManager(self.bus)
        self.ctrl = InteractionController(self.manager)
        self.ctrl.sync()

    def open_contacts(self) -> None:
        self.ctrl.handle_key("enter")
        self.ctrl.sync()


class TestAccountsMode(ControllerTestCase):
    def test_first_account_gets_focus(self) -> None:
        self.assertIs(Mode.ACCOUNTS, self.ctrl.mode)
        self.assertEqual("a1", self.ctrl.current_account)
        self.assertEqual(ACCOUNTS_HELP, self.ctrl.help_text())

    def test_navigation_round_trip_without_wrapping(self) -> None:
        self.ctrl.handle_key("down")
        self.ctrl.handle_key("down")
        self.assertEqual("a3", self.ctrl.current_account)
        self.ctrl.handle_key("down")
        self.assertEqual("a3", self.ctrl.current_account)
        self.ctrl.handle_key("up")
        self.ctrl.handle_key("up")
        self.assertEqual("a1", self.ctrl.current_account)
        self.ctrl.handle_key("up")
        self.assertEqual("a1", self.ctrl.current_account)

    def test_space_toggles_registration(self) -> None:
        self.ctrl.handle_key("space")
        self.ctrl.handle_key("down")
        self.ctrl.handle_key(" ")
        self.assertEqual([("a1", False), ("a2", True)], self.bus.args_of("sendRegister"))

    def test_escape_quits(self) -> None:
        self.assertFalse(self.ctrl.handle_key("escape"))
        self.assertFalse(self.ctrl.running)

    def test_no_key_is_noop(self) -> None:
        calls = len(self.bus.calls)
        self.assertTrue(self.ctrl.handle_key(""))
        self.assertIs(Mode.ACCOUNTS, self.ctrl.mode)
        self.assertEqual(calls, len(self.bus.calls))

    def test_remove_clears_focus(self) -> None:
        self.ctrl.handle_key("R")
        self.assertEqual([("a1",)], self.bus.args_of("removeAccount"))
        self.assertEqual("", self.ctrl.current_account)

    def test_enter_then_escape(self) -> None:
        self.open_contacts()
        self.assertIs(Mode.CONTACTS, self.ctrl.mode)
        self.assertEqual("a1", self.ctrl.current_account)
        self.ctrl.handle_key("escape")
        self.assertIs(Mode.ACCOUNTS, self.ctrl.mode)
        self.assertEqual("", self.ctrl.current_contact)
        self.assertTrue(self.ctrl.running)

    def test_registration_signal_visible_in_next_view(self) -> None:
        self.manager.apply_notification(
            notification("registrationStateChanged", "a2", "REGISTERED", 0, "")
        )
        enabled = {a.id: a.enabled for a in self.ctrl.accounts()}
        self.assertEqual({"a1": True, "a2": True, "a3": True}, enabled)


class TestAccountPopups(ControllerTestCase):
    def test_add_account_form(self) -> None:
        self.ctrl.handle_key("a")
        self.assertIs(Mode.ADD_ACCOUNT, self.ctrl.mode)
        popup = self.ctrl.popup
        self.assertIs(Focus.FIELD1, popup.focus)

        _type(self.ctrl, "alicex")
        self.ctrl.handle_key("backspace")
        self.ctrl.handle_key("tab")
        self.assertIs(Focus.FIELD2, popup.focus)
        _type(self.ctrl, "pw")
        self.ctrl.handle_key("enter")  # enter on a field does nothing
        self.assertIs(Mode.ADD_ACCOUNT, self.ctrl.mode)
        self.ctrl.handle_key("tab")
        self.assertIs(Focus.OK, popup.focus)
        self.ctrl.handle_key("enter")

        self.assertIs(Mode.ACCOUNTS, self.ctrl.mode)
        self.assertIsNone(self.ctrl.popup)
        details = self.bus.args_of("addAccount")[0][0]
        self.assertEqual("alice", details["Account.alias"])
        self.assertEqual("pw", details["Account.archivePassword"])

    def test_focus_cycles_through_buttons(self) -> None:
        self.ctrl.handle_key("i")
        popup = self.ctrl.popup
        seen = []
        for _ in range(5):
            seen.append(popup.focus)
            self.ctrl.handle_key("tab")
        self.assertEqual(
            [Focus.FIELD1, Focus.FIELD2, Focus.OK, Focus.CANCEL, Focus.FIELD1], seen
        )

    def test_typing_on_buttons_is_ignored(self) -> None:
        self.ctrl.handle_key("a")
        self.ctrl.handle_key("tab")
        self.ctrl.handle_key("tab")
        _type(self.ctrl, "xyz")
        self.assertEqual(["", ""], self.ctrl.popup.values)

    def test_import_uses_archive_path(self) -> None:
        self.ctrl.handle_key("I")
        self.assertIs(Mode.IMPORT_ACCOUNT, self.ctrl.mode)
        _type(self.ctrl, "/tmp/x.gz")
        self.ctrl.handle_key("tab")
        _type(self.ctrl, "pw")
        self.ctrl.handle_key("tab")
        self.ctrl.handle_key("enter")
        details = self.bus.args_of("addAccount")[0][0]
        self.assertEqual("/tmp/x.gz", details["Account.archivePath"])

    def test_cancel_and_escape_have_no_effect(self) -> None:
        self.ctrl.handle_key("a")
        _type(self.ctrl, "alice")
        self.ctrl.handle_key("escape")
        self.assertIs(Mode.ACCOUNTS, self.ctrl.mode)
        self.assertTrue(self.ctrl.running)

        self.ctrl.handle_key("a")
        for _ in range(3):
            self.ctrl.handle_key("tab")
        self.assertIs(Focus.CANCEL, self.ctrl.popup.focus)
        self.ctrl.handle_key("enter")
        self.assertIs(Mode.ACCOUNTS, self.ctrl.mode)
        self.assertEqual([], self.bus.args_of("addAccount"))


class TestContactsMode(ControllerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.open_contacts()

    def test_requests_are_focused_first(self) -> None:
        self.assertEqual("b2", self.ctrl.current_contact)
        self.assertEqual(REQUEST_HELP, self.ctrl.help_text())

    def test_navigation_order(self) -> None:
        seen = [self.ctrl.current_contact]
        for _ in range(4):
            self.ctrl.handle_key("down")
            seen.append(self.ctrl.current_contact)
        self.assertEqual(["b2", "b3", "c1", "c2", "c2"], seen)
        self.assertEqual(CONTACT_HELP, self.ctrl.help_text())

        for _ in range(3):
            self.ctrl.handle_key("up")
        self.assertEqual("b2", self.ctrl.current_contact)

    def test_accept_and_discard_focused_request(self) -> None:
        self.ctrl.handle_key("a")
        self.assertEqual([("a1", "b2", True)], self.bus.args_of("acceptTrustRequest"))
        self.assertIsNone(self.ctrl.popup)

        self.ctrl.handle_key("r")
        self.assertEqual([("a1", "b2", False)], self.bus.args_of("discardTrustRequest"))
        self.assertEqual([], self.bus.args_of("removeContact"))
        self.assertEqual("", self.ctrl.current_contact)

    def test_send_is_not_offered_for_requests(self) -> None:
        self.ctrl.handle_key("w")
        self.assertIsNone(self.ctrl.popup)
        self.assertIs(Mode.CONTACTS, self.ctrl.mode)

    def test_ban_always_removes_with_ban(self) -> None:
        self.ctrl.handle_key("b")
        self.assertEqual([("a1", "b2", True)], self.bus.args_of("removeContact"))
        self.assertEqual("", self.ctrl.current_contact)

    def _focus_contact(self, contact: str) -> None:
        while self.ctrl.current_contact != contact:
            self.ctrl.handle_key("down")

    def test_remove_confirmed_contact(self) -> None:
        self._focus_contact("c1")
        self.ctrl.handle_key("R")
        self.assertEqual([("a1", "c1", False)], self.bus.args_of("removeContact"))
        self.assertEqual([], self.bus.args_of("discardTrustRequest"))

    def test_add_contact_popup(self) -> None:
        self._focus_contact("c1")
        self.ctrl.handle_key("a")
        self.assertIs(Mode.ADD_CONTACT, self.ctrl.mode)
        self.assertEqual([Focus.FIELD1, Focus.OK, Focus.CANCEL], self.ctrl.popup.focus_order())
        _type(self.ctrl, "d4")
        self.ctrl.handle_key("tab")
        self.ctrl.handle_key("enter")
        self.assertIs(Mode.CONTACTS, self.ctrl.mode)
        self.assertEqual([("a1", "d4")], self.bus.args_of("addContact"))

    def test_send_message_popup(self) -> None:
        self._focus_contact("c2")
        self.ctrl.handle_key("W")
        self.assertIs(Mode.SEND_INTERACTION, self.ctrl.mode)
        _type(self.ctrl, "hi")
        self.ctrl.handle_key("space")
        _type(self.ctrl, "there")
        self.ctrl.handle_key("tab")
        self.ctrl.handle_key("enter")
        self.assertIs(Mode.CONTACTS, self.ctrl.mode)
        self.assertEqual(
            [("a1", "c2", {"text/plain": "hi there"})], self.bus.args_of("sendTextMessage")
        )
        self.assertEqual("c2", self.ctrl.current_contact)

    def test_place_call(self) -> None:
        self._focus_contact("c1")
        self.ctrl.handle_key("c")
        self.assertEqual([("a1", "ring:c1")], self.bus.args_of("placeCall"))

    def test_interactions_for_focused_contact(self) -> None:
        self._focus_contact("c1")
        for body in ("one", "two"):
            self.manager.apply_notification(
                notification("incomingAccountMessage", "a1", "c1", {"text/plain": body})
            )
        self.assertEqual(["two", "one"], [i.body for i in self.ctrl.interactions()])

    def test_missing_data_renders_empty(self) -> None:
        self.bus.fail("getContacts")
        self.bus.fail("getTrustRequests")
        view = self.ctrl.contacts_view()
        self.assertEqual(([], []), (view.requests, view.contacts))
        self.ctrl.handle_key("down")
        self.assertEqual("b2", self.ctrl.current_contact)


class TestHelpers(unittest.TestCase):
    def test_next_entry(self) -> None:
        self.assertEqual("b", next_entry(["a", "b", "c"], "a"))
        self.assertEqual("c", next_entry(["a", "b", "c"], "c"))
        self.assertEqual("x", next_entry(["a", "b"], "x"))
        self.assertEqual("", next_entry([], ""))

    def test_backward_order_is_reversed(self) -> None:
        view = ContactsView(requests=["r1", "r2"], contacts=["c1", "c2"])
        self.assertEqual(["r1", "r2", "c1", "c2"], view.ordered())
        self.assertEqual(["c2", "c1", "r2", "r1"], view.ordered(forward=False))


if __name__ == "__main__":
    unittest.main()
