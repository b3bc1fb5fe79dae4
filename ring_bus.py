#!/usr/bin/env python3
# ring_bus.py
# Thin blocking D-Bus facade used by the Ring terminal client (jeepney).

from __future__ import annotations

import os
import struct
import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from jeepney import DBusAddress, HeaderFields, MatchRule, new_method_call
from jeepney.bus_messages import message_bus
from jeepney.io.blocking import DBusConnection, open_dbus_connection
from jeepney.wrappers import DBusErrorResponse, unwrap_msg

from ring_log import get_logger

log = get_logger("bus")

# ======================= Constants & config =======================

RING_DBUS_NAME = "cx.ring.Ring"
CONFIGURATION_PATH = "/cx/ring/Ring/ConfigurationManager"
CONFIGURATION_IFACE = "cx.ring.Ring.ConfigurationManager"
CALL_PATH = "/cx/ring/Ring/CallManager"
CALL_IFACE = "cx.ring.Ring.CallManager"

DEFAULT_CALL_TIMEOUT = 2.0


def _env_timeout(raw: Optional[str]) -> float:
    try:
        value = float((raw or "").strip())
    except ValueError:
        return DEFAULT_CALL_TIMEOUT
    return value if value > 0 else DEFAULT_CALL_TIMEOUT


@dataclass(frozen=True)
class RingConfig:
    bus: str = "SESSION"
    dbus_name: str = RING_DBUS_NAME
    call_timeout: float = DEFAULT_CALL_TIMEOUT

    @classmethod
    def from_env(cls) -> "RingConfig":
        """RING_BUS -> RING_DBUS_NAME -> RING_CALL_TIMEOUT, defaults otherwise."""
        bus = (os.environ.get("RING_BUS") or "SESSION").strip().upper()
        if bus not in ("SESSION", "SYSTEM"):
            bus = "SESSION"
        name = (os.environ.get("RING_DBUS_NAME") or "").strip() or RING_DBUS_NAME
        return cls(
            bus=bus,
            dbus_name=name,
            call_timeout=_env_timeout(os.environ.get("RING_CALL_TIMEOUT")),
        )


# ======================= Errors =======================


class BusError(RuntimeError):
    """Base for every failure crossing the bus boundary."""

    def __init__(self, method: str, detail: str = ""):
        self.method = method
        self.detail = detail
        msg = f"{method} failed" if not detail else f"{method} failed: {detail}"
        super().__init__(msg)


class BusUnavailable(BusError):
    """No connection to the message bus could be opened."""


class MalformedRequest(BusError):
    """The method call could not be built from the given arguments."""


class RemoteFailure(BusError):
    """Error reply, timeout or socket failure after the call was sent."""


class MalformedReply(BusError):
    """The reply did not carry the expected arguments."""


# ======================= Notifications =======================


@dataclass(frozen=True)
class Notification:
    interface: str
    member: str
    body: Tuple


def notification_from_message(msg) -> Notification:
    fields = msg.header.fields
    return Notification(
        interface=fields.get(HeaderFields.interface, ""),
        member=fields.get(HeaderFields.member, ""),
        body=tuple(msg.body or ()),
    )


class Subscription:
    """Owns one private connection and a local queue of matched signals."""

    def __init__(self, conn: DBusConnection, rule: MatchRule):
        self._conn = conn
        self._queue: deque = deque()
        self._handle = conn.filter(rule, queue=self._queue)

    def receive(self, timeout: Optional[float] = None) -> Optional[Notification]:
        """Block until the next matched signal; None when ``timeout`` expires."""
        try:
            msg = self._conn.recv_until_filtered(self._queue, timeout=timeout)
        except TimeoutError:
            return None
        return notification_from_message(msg)

    def close(self):
        try:
            self._handle.close()
        finally:
            self._conn.close()


# ======================= Client =======================


class BusClient:
    """Synchronous request/response calls plus signal subscriptions.

    Every calling thread gets its own connection, so a slow reply on the UI
    thread never holds up calls made from the signal dispatch thread.
    """

    def __init__(self, config: Optional[RingConfig] = None):
        self.config = config or RingConfig()
        self._local = threading.local()
        self._conns: list = []
        self._conns_lock = threading.Lock()

    @classmethod
    def connect(cls, config: Optional[RingConfig] = None) -> "BusClient":
        """Open the calling thread's connection eagerly; raises BusUnavailable."""
        client = cls(config)
        client._connection("connect")
        return client

    def _open(self, what: str) -> DBusConnection:
        try:
            return open_dbus_connection(bus=self.config.bus)
        except (OSError, KeyError, ValueError, RuntimeError) as e:
            raise BusUnavailable(what, str(e)) from e

    def _connection(self, method: str) -> DBusConnection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._open(method)
            self._local.conn = conn
            with self._conns_lock:
                self._conns.append(conn)
        return conn

    def _drop_connection(self):
        conn = getattr(self._local, "conn", None)
        self._local.conn = None
        if conn is None:
            return
        with self._conns_lock:
            if conn in self._conns:
                self._conns.remove(conn)
        try:
            conn.close()
        except OSError:
            pass

    def call(
        self,
        path: str,
        interface: str,
        method: str,
        signature: Optional[str] = None,
        args: Iterable = (),
    ) -> Tuple:
        address = DBusAddress(path, bus_name=self.config.dbus_name, interface=interface)
        msg = new_method_call(address, method, signature, tuple(args))
        conn = self._connection(method)
        try:
            reply = conn.send_and_get_reply(msg, timeout=self.config.call_timeout)
            body = unwrap_msg(reply)
        except (TypeError, KeyError, ValueError, struct.error) as e:
            # raised while serialising the arguments against the signature
            raise MalformedRequest(method, str(e)) from e
        except DBusErrorResponse as e:
            raise RemoteFailure(method, f"{e.name}: {e.data}") from e
        except TimeoutError as e:
            raise RemoteFailure(method, "timed out") from e
        except OSError as e:
            self._drop_connection()
            raise RemoteFailure(method, str(e)) from e
        return tuple(body or ())

    def subscribe(self, interface: str, members: Iterable[str]) -> Subscription:
        """Register one match rule per member on a dedicated connection."""
        conn = self._open("subscribe")
        try:
            for member in members:
                rule = MatchRule(type="signal", interface=interface, member=member)
                unwrap_msg(
                    conn.send_and_get_reply(
                        message_bus.AddMatch(rule),
                        timeout=self.config.call_timeout,
                    )
                )
                log.debug("subscribed to %s.%s", interface, member)
            return Subscription(conn, MatchRule(type="signal", interface=interface))
        except (DBusErrorResponse, TimeoutError, OSError) as e:
            conn.close()
            raise RemoteFailure("AddMatch", str(e)) from e

    def close(self):
        with self._conns_lock:
            conns, self._conns = self._conns, []
        for conn in conns:
            try:
                conn.close()
            except OSError:
                pass
