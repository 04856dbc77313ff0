"""
Routing: route values, address codec and the navigation bus.

A Route is one of a closed set of frozen dataclasses. The RouteCodec maps
routes to address paths and back, in either of two addressing modes:

  - path mode: "/services/stack/svc" in the real path, pushed on history
  - hash mode: "#/services/stack/svc", used when the address already carries
    a "#/" hash or the document is an embedded preview frame that must not
    rewrite the outer path

The mode is re-evaluated on every call rather than cached.

Misroute detection:
  The self-upgrade supervisor is a separate process reachable under its own
  base path (default /supervisor/). If this application is asked to render a
  path at or below that base, the reverse proxy sent the request to the wrong
  upstream; decode() reports SupervisorMisrouteRoute instead of pretending the
  path is a normal page.

Malformed paths (including short or long /services/... paths) decode to
OverviewRoute. Decoding never raises.

AddressBar stands in for the browser location + history. NavigationBus is the
only writer: it wires the address bar's popstate/hashchange events on
construction, notifies subscribers on every route change and unwires in
close().
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union
from urllib.parse import quote, unquote, urlsplit

from .config import DEFAULT_SELF_UPGRADE_URL

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverviewRoute:
    name = "overview"


@dataclass(frozen=True)
class QueueRoute:
    name = "queue"


@dataclass(frozen=True)
class ServicesRoute:
    name = "services"


@dataclass(frozen=True)
class SettingsRoute:
    name = "settings"


@dataclass(frozen=True)
class ServiceRoute:
    stack_id: str
    service_id: str
    name = "service"

    def __post_init__(self) -> None:
        if not self.stack_id or not self.service_id:
            raise ValueError("ServiceRoute needs a stack id and a service id")


@dataclass(frozen=True)
class SupervisorMisrouteRoute:
    base_path: str
    pathname: str
    name = "supervisor-misroute"


Route = Union[
    OverviewRoute,
    QueueRoute,
    ServicesRoute,
    SettingsRoute,
    ServiceRoute,
    SupervisorMisrouteRoute,
]

# Same characters encodeURIComponent leaves alone.
_SEGMENT_SAFE = "!~*'()"

# Base paths that can never belong to the supervisor.
_TRIVIAL_BASE_PATHS = ("", "/api")


def supervisor_base_path(self_upgrade_url: str) -> Optional[str]:
    """Path part of the self-upgrade URL without trailing '/', or None if trivial."""
    try:
        path = urlsplit(self_upgrade_url.strip()).path.rstrip("/")
    except ValueError as e:
        logger.warning(f"Ignoring malformed self-upgrade URL {self_upgrade_url!r}: {e}")
        return None
    if path and not path.startswith("/"):
        path = f"/{path}"
    if path in _TRIVIAL_BASE_PATHS:
        return None
    return path


class RouteCodec:
    """Bidirectional mapping between Route values and address paths."""

    def __init__(self, self_upgrade_url: str = DEFAULT_SELF_UPGRADE_URL):
        self.self_upgrade_url = self_upgrade_url
        self.supervisor_base_path = supervisor_base_path(self_upgrade_url)

    def is_misrouted(self, pathname: str) -> bool:
        base = self.supervisor_base_path
        if base is None:
            return False
        return pathname == base or pathname.startswith(f"{base}/")

    def decode(self, pathname: str) -> Route:
        if self.is_misrouted(pathname):
            return SupervisorMisrouteRoute(base_path=self.supervisor_base_path, pathname=pathname)

        parts = [unquote(p) for p in pathname.split("/") if p]
        if not parts:
            return OverviewRoute()
        if len(parts) == 1:
            if parts[0] == "queue":
                return QueueRoute()
            if parts[0] == "services":
                return ServicesRoute()
            if parts[0] == "settings":
                return SettingsRoute()
        if len(parts) == 3 and parts[0] == "services" and parts[1] and parts[2]:
            return ServiceRoute(stack_id=parts[1], service_id=parts[2])
        return OverviewRoute()

    def encode(self, route: Route) -> str:
        match route:
            case OverviewRoute():
                return "/"
            case QueueRoute():
                return "/queue"
            case ServicesRoute():
                return "/services"
            case SettingsRoute():
                return "/settings"
            case ServiceRoute(stack_id=stack_id, service_id=service_id):
                return f"/services/{quote(stack_id, safe=_SEGMENT_SAFE)}/{quote(service_id, safe=_SEGMENT_SAFE)}"
            case SupervisorMisrouteRoute(pathname=pathname):
                return pathname
        raise TypeError(f"Not a route: {route!r}")

    def uses_hash_routing(self, address: "AddressBar") -> bool:
        if address.hash.startswith("#/"):
            return True
        # Preview frames render inside iframe.html; rewriting the path breaks the frame.
        if address.embedded or address.pathname.endswith("/iframe.html"):
            return True
        return False

    def current_pathname(self, address: "AddressBar") -> str:
        if address.hash.startswith("#/"):
            return address.hash[1:]
        return address.pathname

    def current_href(self, route: Route, address: "AddressBar") -> str:
        url = self.encode(route)
        return f"#{url}" if self.uses_hash_routing(address) else url


AddressListener = Callable[[], None]


def _split_url(url: str) -> Tuple[str, str]:
    try:
        parts = urlsplit(url)
    except ValueError as e:
        logger.warning(f"Malformed address {url!r}, using /: {e}")
        return "/", ""
    pathname = parts.path or "/"
    return pathname, f"#{parts.fragment}" if parts.fragment else ""


class AddressBar:
    """In-process location + history with browser-like popstate/hashchange events."""

    EVENTS = ("popstate", "hashchange")

    def __init__(self, url: str = "/", embedded: bool = False):
        self.pathname, self.hash = _split_url(url)
        self.embedded = embedded
        self._history: List[Tuple[str, str]] = [(self.pathname, self.hash)]
        self._listeners: Dict[str, List[AddressListener]] = {e: [] for e in self.EVENTS}

    @property
    def href(self) -> str:
        return f"{self.pathname}{self.hash}"

    def add_event_listener(self, event: str, listener: AddressListener) -> None:
        if listener not in self._listeners[event]:
            self._listeners[event].append(listener)

    def remove_event_listener(self, event: str, listener: AddressListener) -> None:
        if listener in self._listeners[event]:
            self._listeners[event].remove(listener)

    def _dispatch(self, event: str) -> None:
        for listener in list(self._listeners[event]):
            listener()

    def push_state(self, url: str) -> None:
        """Like history.pushState: changes the address without firing events."""
        self.pathname, self.hash = _split_url(url)
        self._history.append((self.pathname, self.hash))

    def set_hash(self, hash_value: str) -> None:
        if not hash_value.startswith("#"):
            hash_value = f"#{hash_value}"
        if hash_value == self.hash:
            return
        self.hash = hash_value
        self._history.append((self.pathname, self.hash))
        self._dispatch("hashchange")

    def back(self) -> bool:
        if len(self._history) < 2:
            return False
        self._history.pop()
        old_hash = self.hash
        self.pathname, self.hash = self._history[-1]
        self._dispatch("popstate")
        if self.hash != old_hash:
            self._dispatch("hashchange")
        return True

    def edit(self, url: str) -> None:
        """A manual address edit by the user."""
        pathname, hash_value = _split_url(url)
        if pathname == self.pathname:
            if hash_value == self.hash:
                return
            self.hash = hash_value
            self._history.append((self.pathname, self.hash))
            self._dispatch("hashchange")
            return
        self.pathname, self.hash = pathname, hash_value
        self._history.append((self.pathname, self.hash))
        self._dispatch("popstate")


NavListener = Callable[[Route], None]


class NavigationBus:
    """
    Broadcasts route changes to subscribers.

    Construction calls start(), which wires the address bar's popstate and
    hashchange events once; those are the only way external address changes
    (back/forward, manual edits) enter. close() unwires them and drops every
    subscriber. Subscribers must call the disposer returned by subscribe()
    when they go away.
    """

    def __init__(self, address: AddressBar, codec: Optional[RouteCodec] = None):
        self.address = address
        self.codec = codec or RouteCodec()
        self._listeners: set = set()
        self._wired = False
        self.start()

    def start(self) -> None:
        if self._wired:
            return
        for event in AddressBar.EVENTS:
            self.address.add_event_listener(event, self.notify)
        self._wired = True

    def close(self) -> None:
        for event in AddressBar.EVENTS:
            self.address.remove_event_listener(event, self.notify)
        self._wired = False
        self._listeners.clear()

    def subscribe(self, listener: NavListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def current_route(self) -> Route:
        return self.codec.decode(self.codec.current_pathname(self.address))

    def current_href(self, route: Route) -> str:
        return self.codec.current_href(route, self.address)

    def navigate(self, route: Route) -> None:
        url = self.codec.encode(route)
        if self.codec.uses_hash_routing(self.address):
            target = f"#{url}"
            if self.address.hash != target:
                # The hashchange event notifies.
                self.address.set_hash(target)
            else:
                self.notify()
            return

        self.address.push_state(url)
        self.notify()

    def notify(self) -> None:
        route = self.current_route()
        logger.debug(f"Route changed: {route}")
        for listener in list(self._listeners):
            try:
                listener(route)
            except Exception:
                logger.exception(f"Navigation listener {listener!r} failed")
