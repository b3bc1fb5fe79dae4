#!/usr/bin/env python3
# ring_state.py
# Shared account/interaction snapshot, daemon RPCs, and the signal dispatch thread.

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from ring_bus import (
    CALL_IFACE,
    CALL_PATH,
    CONFIGURATION_IFACE,
    CONFIGURATION_PATH,
    BusError,
    MalformedReply,
    Notification,
    Subscription,
)
from ring_log import get_logger

log = get_logger("state")

TEXT_PLAIN = "text/plain"
REGISTERED = "REGISTERED"

# ======================= Domain state =======================


@dataclass(frozen=True)
class Account:
    id: str
    ring_id: str
    alias: str
    enabled: bool


@dataclass(frozen=True)
class Interaction:
    author_ring_id: str
    body: str
    timestamp: datetime


class SignalKind(Enum):
    ACCOUNTS_CHANGED = "accountsChanged"
    REGISTRATION_CHANGED = "registrationStateChanged"
    INCOMING_INTERACTION = "incomingAccountMessage"
    INCOMING_TRUST_REQUEST = "incomingTrustRequest"
    IGNORED = ""


SUBSCRIBED_MEMBERS = tuple(k.value for k in SignalKind if k is not SignalKind.IGNORED)


def _detail(details: Dict[str, str], key: str) -> Optional[str]:
    # daemon uses "Account.<key>"; accept the bare key as well
    if f"Account.{key}" in details:
        return details[f"Account.{key}"]
    return details.get(key)


def account_from_details(account_id: str, details: Dict[str, str]) -> Account:
    enable = _detail(details, "enable")
    return Account(
        id=account_id,
        ring_id=_detail(details, "username") or "",
        alias=_detail(details, "alias") or "",
        enabled=True if enable is None else enable == "true",
    )


def _extract(rows, key: str) -> List[str]:
    out: List[str] = []
    for row in rows:
        if isinstance(row, dict) and key in row:
            out.append(str(row[key]))
    return out


def _first(body: Tuple, method: str):
    if not body:
        raise MalformedReply(method, "empty reply")
    return body[0]


# ======================= State manager =======================


class StateManager:
    """Owns accounts + interactions behind one lock and proxies daemon RPCs.

    RPC helpers never raise: failures are logged and turned into the
    documented sentinel ("" / [] / 0 / False).
    """

    def __init__(self, bus, *, refresh: bool = True):
        self.bus = bus
        self._lock = threading.RLock()
        self._accounts: List[Account] = []
        self._interactions: List[Tuple[str, Interaction]] = []
        self.last_notice: str = ""
        if refresh:
            self.refresh_accounts()

    # ---- exclusive access ----

    @contextmanager
    def exclusive(self) -> Iterator["StateManager"]:
        with self._lock:
            yield self

    def accounts(self) -> List[Account]:
        with self._lock:
            return list(self._accounts)

    def find_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            for account in self._accounts:
                if account.id == account_id:
                    return account
        return None

    def interactions(self, account_id: str, contact_id: str) -> List[Interaction]:
        """Interactions from ``contact_id`` on ``account_id``, most recent first."""
        with self._lock:
            rows = [
                i
                for acc, i in self._interactions
                if acc == account_id and i.author_ring_id == contact_id
            ]
        rows.reverse()
        return rows

    def interaction_count(self) -> int:
        with self._lock:
            return len(self._interactions)

    # ---- bus plumbing ----

    def _config_call(self, method: str, signature: Optional[str] = None, *args) -> Tuple:
        return self.bus.call(
            CONFIGURATION_PATH, CONFIGURATION_IFACE, method, signature, args
        )

    def _failed(self, method: str, e: BusError):
        log.warning("%s: %s", method, e)

    # ---- accounts ----

    def refresh_accounts(self) -> bool:
        """Re-fetch every account; the snapshot is only replaced if all calls succeed."""
        try:
            ids = _first(self._config_call("getAccountList"), "getAccountList")
            if not isinstance(ids, list):
                raise MalformedReply("getAccountList", f"unexpected reply {ids!r}")
            fresh: List[Account] = []
            for account_id in ids:
                details = _first(
                    self._config_call("getAccountDetails", "s", account_id),
                    "getAccountDetails",
                )
                if not isinstance(details, dict):
                    raise MalformedReply("getAccountDetails", f"unexpected reply {details!r}")
                fresh.append(account_from_details(account_id, details))
        except BusError as e:
            with self._lock:
                kept = len(self._accounts)
            log.warning("account refresh skipped, keeping %d accounts: %s", kept, e)
            return False
        with self._lock:
            self._accounts = fresh
        log.debug("accounts refreshed: %s", [a.id for a in fresh])
        return True

    def set_account_enabled(self, account_id: str, enable: bool) -> bool:
        # local state follows the registrationStateChanged signal
        try:
            self._config_call("sendRegister", "sb", account_id, enable)
        except BusError as e:
            self._failed("sendRegister", e)
            return False
        return True

    def add_account(self, primary_info: str, password: str, from_archive: bool) -> str:
        details = {
            "Account.type": "RING",
            "Account.archivePassword": password,
        }
        if from_archive:
            details["Account.archivePath"] = primary_info
        else:
            details["Account.alias"] = primary_info
        try:
            account_id = _first(self._config_call("addAccount", "a{ss}", details), "addAccount")
        except BusError as e:
            self._failed("addAccount", e)
            return ""
        log.info("new account: %s", account_id)
        return str(account_id)

    def remove_account(self, account_id: str) -> bool:
        try:
            self._config_call("removeAccount", "s", account_id)
        except BusError as e:
            self._failed("removeAccount", e)
            return False
        log.info("removed account: %s", account_id)
        return True

    # ---- contacts & requests (never cached) ----

    def add_contact(self, account_id: str, contact: str) -> bool:
        try:
            self._config_call("addContact", "ss", account_id, contact)
        except BusError as e:
            self._failed("addContact", e)
            return False
        return True

    def remove_contact(self, account_id: str, contact: str, banned: bool) -> bool:
        try:
            self._config_call("removeContact", "ssb", account_id, contact, banned)
        except BusError as e:
            self._failed("removeContact", e)
            return False
        return True

    def get_contacts(self, account_id: str) -> List[str]:
        try:
            rows = _first(self._config_call("getContacts", "s", account_id), "getContacts")
        except BusError as e:
            self._failed("getContacts", e)
            return []
        if not isinstance(rows, list):
            log.error("getContacts: unexpected reply %r", rows)
            return []
        return _extract(rows, "id")

    def get_pending_requests(self, account_id: str) -> List[str]:
        try:
            rows = _first(
                self._config_call("getTrustRequests", "s", account_id), "getTrustRequests"
            )
        except BusError as e:
            self._failed("getTrustRequests", e)
            return []
        if not isinstance(rows, list):
            log.error("getTrustRequests: unexpected reply %r", rows)
            return []
        return _extract(rows, "from")

    def respond_to_request(self, account_id: str, sender: str, accept: bool) -> bool:
        method = "acceptTrustRequest" if accept else "discardTrustRequest"
        try:
            result = _first(self._config_call(method, "ssb", account_id, sender, accept), method)
        except BusError as e:
            self._failed(method, e)
            return False
        return result is True

    def send_trust_request(self, account_id: str, to: str) -> bool:
        try:
            self._config_call("sendTrustMessage", "ssay", account_id, to, b"\x00")
        except BusError as e:
            self._failed("sendTrustMessage", e)
            return False
        return True

    # ---- interactions & calls ----

    def send_text(self, account_id: str, to: str, body: str) -> int:
        """Returns the daemon's interaction id, 0 if nothing was sent.

        Outgoing text is not appended locally.
        """
        try:
            reply = _first(
                self._config_call(
                    "sendTextMessage", "ssa{ss}", account_id, to, {TEXT_PLAIN: body}
                ),
                "sendTextMessage",
            )
        except BusError as e:
            self._failed("sendTextMessage", e)
            return 0
        if not isinstance(reply, int) or isinstance(reply, bool):
            log.error("sendTextMessage: unexpected reply %r", reply)
            return 0
        return reply

    def place_call(self, account_id: str, destination: str) -> str:
        try:
            reply = _first(
                self.bus.call(
                    CALL_PATH, CALL_IFACE, "placeCall", "ss",
                    (account_id, f"ring:{destination}"),
                ),
                "placeCall",
            )
        except BusError as e:
            self._failed("placeCall", e)
            return ""
        log.info("call %s placed to %s", reply, destination)
        return str(reply)

    # ---- signals ----

    def classify(self, notification: Notification) -> SignalKind:
        if notification.interface != CONFIGURATION_IFACE:
            return SignalKind.IGNORED
        for kind in SignalKind:
            if kind is not SignalKind.IGNORED and kind.value == notification.member:
                return kind
        return SignalKind.IGNORED

    def apply_notification(self, notification: Notification) -> SignalKind:
        """Classify one notification and apply its single effect under the lock."""
        kind = self.classify(notification)
        with self._lock:
            try:
                if kind is SignalKind.ACCOUNTS_CHANGED:
                    self.refresh_accounts()
                elif kind is SignalKind.REGISTRATION_CHANGED:
                    self._on_registration_changed(notification.body)
                elif kind is SignalKind.INCOMING_INTERACTION:
                    self._on_incoming_interaction(notification.body)
                elif kind is SignalKind.INCOMING_TRUST_REQUEST:
                    self._on_trust_request(notification.body)
            except (IndexError, ValueError, TypeError, AttributeError) as e:
                log.warning("malformed %s signal %r: %s", notification.member,
                            notification.body, e)
        return kind

    def _on_registration_changed(self, body: Tuple):
        account_id, state = str(body[0]), str(body[1])
        for idx, account in enumerate(self._accounts):
            if account.id == account_id:
                self._accounts[idx] = replace(account, enabled=state == REGISTERED)
                log.debug("account %s registration: %s", account_id, state)
                return

    def _on_incoming_interaction(self, body: Tuple):
        account_id, author, payloads = str(body[0]), str(body[1]), body[2]
        if not isinstance(payloads, dict):
            raise ValueError("payloads is not a dict")
        interaction = Interaction(
            author_ring_id=author,
            body=str(payloads.get(TEXT_PLAIN, "")),
            timestamp=datetime.now(timezone.utc).astimezone(),
        )
        self._interactions.append((account_id, interaction))
        self.last_notice = f"New interaction for {account_id} from {author}"
        log.info("new interaction for %s from %s", account_id, author)

    def _on_trust_request(self, body: Tuple):
        account_id, sender = str(body[0]), str(body[1])
        self.last_notice = f"New request for {account_id} from {sender}"
        log.info("new trust request for %s from %s", account_id, sender)


# ======================= Signal dispatch =======================


class SignalDispatcher(threading.Thread):
    """Applies one notification per iteration, holding the lock only while applying."""

    def __init__(self, manager: StateManager, subscription: Subscription,
                 poll: float = 1.0):
        super().__init__(name="ring-signals", daemon=True)
        self.manager = manager
        self.subscription = subscription
        self.poll = poll
        self._stop_event = threading.Event()

    def run(self):
        while not self._stop_event.is_set():
            try:
                notification = self.subscription.receive(timeout=self.poll)
            except (BusError, OSError) as e:
                log.error("signal subscription lost: %s", e)
                return
            if notification is None:
                continue
            with self.manager.exclusive() as manager:
                manager.apply_notification(notification)

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)
