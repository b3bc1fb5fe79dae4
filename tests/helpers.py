from __future__ import annotations

import queue
import threading
from typing import Callable, Dict, List, Optional, Tuple

from ring_bus import CONFIGURATION_IFACE, Notification, RemoteFailure


class FakeBus:
    """Scripted stand-in for BusClient.call.

    ``replies`` maps a method name to a reply tuple, an exception instance to
    raise, or a callable taking the call args and returning either.
    """

    def __init__(self, replies: Optional[Dict[str, object]] = None):
        self.replies: Dict[str, object] = dict(replies or {})
        self.calls: List[Tuple[str, str, Tuple]] = []
        self._lock = threading.Lock()

    def call(self, path, interface, method, signature=None, args=()) -> Tuple:
        with self._lock:
            self.calls.append((interface, method, tuple(args)))
        reply = self.replies.get(method, ())
        if callable(reply) and not isinstance(reply, BaseException):
            reply = reply(*args)
        if isinstance(reply, BaseException):
            raise reply
        return tuple(reply)

    def methods(self) -> List[str]:
        return [m for _, m, _ in self.calls]

    def args_of(self, method: str) -> List[Tuple]:
        return [a for _, m, a in self.calls if m == method]

    def fail(self, method: str):
        self.replies[method] = RemoteFailure(method, "timed out")


class FakeSubscription:
    def __init__(self):
        self._queue: "queue.Queue[Notification]" = queue.Queue()
        self.closed = False

    def push(self, member: str, *body, interface: str = CONFIGURATION_IFACE):
        self._queue.put(Notification(interface=interface, member=member, body=tuple(body)))

    def receive(self, timeout=None) -> Optional[Notification]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self):
        self.closed = True


def ring_daemon(accounts: Dict[str, Dict[str, str]]) -> Dict[str, Callable]:
    """Replies for getAccountList/getAccountDetails backed by a dict."""
    return {
        "getAccountList": lambda *args: (list(accounts),),
        "getAccountDetails": lambda account_id: (dict(accounts[account_id]),),
    }


def notification(member: str, *body, interface: str = CONFIGURATION_IFACE) -> Notification:
    return Notification(interface=interface, member=member, body=tuple(body))
