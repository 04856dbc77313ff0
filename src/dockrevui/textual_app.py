"""Textual-based UI for dockrevui."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Optional, Union

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.screen import ModalScreen
from textual.timer import Timer
from textual.widgets import Footer, Header, Static, Tab, Tabs

from .backend import ApiError, DockrevApi
from .config import ConfigManager, config_manager
from .confirm import ConfirmBroker, ConfirmOptions
from .health import HealthChecking, HealthOffline, HealthOk, HealthState, SupervisorHealthMonitor
from .model import JobListItem, ServiceInfo
from .routes import (
    AddressBar,
    NavigationBus,
    OverviewRoute,
    QueueRoute,
    Route,
    RouteCodec,
    ServiceRoute,
    ServicesRoute,
    SettingsRoute,
    SupervisorMisrouteRoute,
)
from .target import SelectedTarget, TargetResolver
from .update_status import (
    FILTER_VALUES,
    RowStatus,
    count_statuses,
    effective_current_tag,
    filter_services,
    note_for,
    service_row_status,
    status_badge,
    status_label,
    status_tone,
)

logger = logging.getLogger(__name__)

TONE_STYLES = {"ok": "green", "warn": "yellow", "bad": "red", "muted": "dim"}


class ConfirmScreen(ModalScreen[bool]):
    def __init__(self, options: ConfirmOptions) -> None:
        super().__init__()
        self.options = options

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static(f"{self.options.title}  [{self.options.badge}]", classes="modal_title", markup=False),
            Static(self.options.body, classes="modal_body", markup=False),
            Static(
                f"[Enter/Y] {self.options.confirm_text}    [Esc/N] {self.options.cancel_text}",
                classes="modal_hint",
                markup=False,
            ),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "y", "Y"):
            self.dismiss(True)
        elif event.key in ("escape", "n", "N"):
            self.dismiss(False)


def describe_health(state: HealthState) -> str:
    if isinstance(state, HealthOk):
        return f"ok ({state.ok_at})"
    if isinstance(state, HealthChecking):
        return "checking..."
    if isinstance(state, HealthOffline):
        return f"offline ({state.error_at})"
    return "unknown"


class DockrevTextualApp(App[None]):
    TITLE = "dockrevui"
    SUB_TITLE = "Dockrev update manager"

    CSS = """
    Screen {
      layout: vertical;
    }

    #tabs {
      height: 1;
      padding: 0 1;
      background: $surface;
      color: $text;
    }

    #page {
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }

    #modal {
      width: 70;
      height: auto;
      border: round $accent;
      background: $surface;
      padding: 1 2;
      align: center middle;
    }

    .modal_title {
      text-style: bold;
      margin-bottom: 1;
    }

    .modal_body {
      margin-bottom: 1;
    }

    .modal_hint {
      color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("1", "go('overview')", "Overview", show=False),
        Binding("2", "go('queue')", "Queue", show=False),
        Binding("3", "go('services')", "Services", show=False),
        Binding("4", "go('settings')", "Settings", show=False),
        Binding("up", "up", "Up"),
        Binding("down", "down", "Down"),
        Binding("enter", "open", "Open"),
        Binding("escape", "back", "Back"),
        Binding("f", "cycle_filter", "Filter"),
        Binding("t", "cycle_target", "Target"),
        Binding("u", "update", "Update"),
        Binding("c", "check", "Check"),
        Binding("r", "retry_supervisor", "Retry supervisor"),
        Binding("R", "refresh", "Refresh"),
        Binding("a", "toggle_rollback", "Auto-rollback", show=False),
        Binding("T", "toggle_theme", "Theme", show=False),
    ]

    TABS = ["overview", "queue", "services", "settings"]

    def __init__(self, api: Optional[DockrevApi] = None, address: Optional[AddressBar] = None,
                 config: Optional[ConfigManager] = None) -> None:
        super().__init__()
        self.app_config = config or config_manager
        runtime = self.app_config.get_runtime()
        self.api = api or DockrevApi(runtime.api_base_url)
        self.address = address or AddressBar("/")
        self.nav = NavigationBus(self.address, RouteCodec(runtime.self_upgrade_url))
        self.health = SupervisorHealthMonitor(runtime.self_upgrade_base_url(), origin=runtime.api_base_url)
        self.confirmer = ConfirmBroker(on_request=self._show_confirm)
        self.ui_theme = self.app_config.get_theme()

        self.route: Route = self.nav.current_route()
        self.services: list[tuple[str, ServiceInfo]] = []
        self.jobs: list[JobListItem] = []
        self.candidate_filter = FILTER_VALUES[0]
        self.selected_index = 0
        self.resolver: Optional[TargetResolver] = None
        self.selected_target: Optional[SelectedTarget] = None
        self.status_message = ""
        self._disposers: list[Callable[[], None]] = []
        self._ready = False

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Tabs(
            Tab("OVERVIEW", id="overview"),
            Tab("QUEUE", id="queue"),
            Tab("SERVICES", id="services"),
            Tab("SETTINGS", id="settings"),
            id="tabs",
        )
        yield Static("", id="page", markup=False)
        yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self._apply_theme()
        self._ready = True
        self._start_auto_refresh()
        self._disposers.append(self.nav.subscribe(self._on_route))
        self._disposers.append(self.health.subscribe(lambda _state: self._render()))
        self.health.mount()
        self._on_route(self.route)

    async def on_unmount(self) -> None:
        self._ready = False
        for dispose in self._disposers:
            dispose()
        self._disposers.clear()
        self.nav.close()
        self.health.close()
        await self.api.close()

    # Navigation

    def _on_route(self, route: Route) -> None:
        self.route = route
        self.selected_index = 0
        self.resolver = None
        self.selected_target = None
        if route.name in self.TABS and self._ready:
            self.query_one("#tabs", Tabs).active = route.name
        self.run_worker(self._load_page(route), group="page", exclusive=True)
        self._render()

    def action_go(self, name: str) -> None:
        routes = {
            "overview": OverviewRoute(),
            "queue": QueueRoute(),
            "services": ServicesRoute(),
            "settings": SettingsRoute(),
        }
        self.nav.navigate(routes[name])

    def action_back(self) -> None:
        if not self.address.back():
            self.nav.navigate(OverviewRoute())

    # Data loading

    async def _load_page(self, route: Route) -> None:
        try:
            if isinstance(route, QueueRoute):
                self.jobs = await self.api.list_jobs()
            elif isinstance(route, (OverviewRoute, ServicesRoute, ServiceRoute)):
                await self._load_services()
            if isinstance(route, ServiceRoute):
                svc = self._current_service()
                if svc is not None:
                    self.resolver = TargetResolver(
                        current_tag=effective_current_tag(svc),
                        on_change=self._on_target,
                        initial_tag=svc.candidate.tag if svc.candidate else None,
                        initial_digest=svc.candidate.digest if svc.candidate else None,
                    )
                    await self.resolver.load(self.api, svc.id)
        except ApiError as e:
            self.status_message = f"Error: {e.message}"
        self._render()

    async def _load_services(self) -> None:
        stacks = await self.api.list_stacks()
        services: list[tuple[str, ServiceInfo]] = []
        for stack in stacks:
            if stack.archived:
                continue
            detail = await self.api.get_stack(stack.id)
            services.extend((stack.id, s) for s in detail.services if not s.archived)
        self.services = services

    def _current_service(self) -> Optional[ServiceInfo]:
        if not isinstance(self.route, ServiceRoute):
            return None
        for stack_id, svc in self.services:
            if stack_id == self.route.stack_id and svc.id == self.route.service_id:
                return svc
        return None

    def _visible_rows(self) -> list[tuple[str, ServiceInfo]]:
        if isinstance(self.route, OverviewRoute):
            keep = {id(s) for s in filter_services([s for _, s in self.services], self.candidate_filter)}
            return [(st, s) for st, s in self.services if id(s) in keep]
        return list(self.services)

    def _on_target(self, target: SelectedTarget) -> None:
        self.selected_target = target
        self._render()

    # Actions

    def action_up(self) -> None:
        self.selected_index = max(0, self.selected_index - 1)
        self._render()

    def action_down(self) -> None:
        rows = self._visible_rows()
        self.selected_index = max(0, min(self.selected_index + 1, len(rows) - 1))
        self._render()

    def action_open(self) -> None:
        rows = self._visible_rows()
        if isinstance(self.route, (OverviewRoute, ServicesRoute)) and 0 <= self.selected_index < len(rows):
            stack_id, svc = rows[self.selected_index]
            self.nav.navigate(ServiceRoute(stack_id=stack_id, service_id=svc.id))

    def action_cycle_filter(self) -> None:
        idx = FILTER_VALUES.index(self.candidate_filter)
        self.candidate_filter = FILTER_VALUES[(idx + 1) % len(FILTER_VALUES)]
        self.selected_index = 0
        self._render()

    def action_cycle_target(self) -> None:
        if self.resolver is None or self.resolver.select_disabled:
            return
        tags = [o.tag for o in self.resolver.selectable]
        current = self.resolver.effective_tag
        nxt = tags[(tags.index(current) + 1) % len(tags)] if current in tags else tags[0]
        self.resolver.select(nxt)

    def action_update(self) -> None:
        self.run_worker(self._update_flow(), group="user-action", exclusive=True)

    def action_check(self) -> None:
        self.run_worker(self._check_flow(), group="user-action", exclusive=True)

    def action_retry_supervisor(self) -> None:
        self.run_worker(self.health.check(), group="supervisor")

    def action_refresh(self) -> None:
        self.run_worker(self._load_page(self.route), group="page", exclusive=True)

    def _start_auto_refresh(self) -> Optional[Timer]:
        interval = self.app_config.get_refresh_interval()
        if not interval or interval <= 0:
            return None
        return self.set_interval(interval, self._auto_refresh)

    def _auto_refresh(self) -> None:
        # Leave the page alone while a confirmation is open.
        if self.confirmer.pending is None:
            self.action_refresh()

    def _apply_theme(self) -> None:
        self.theme = "textual-light" if self.ui_theme == "light" else "textual-dark"

    def action_toggle_theme(self) -> None:
        theme = "light" if self.ui_theme == "dark" else "dark"
        self.app_config.set_theme(theme)
        self.ui_theme = theme
        if self._ready:
            self._apply_theme()
        self._render()

    def action_toggle_rollback(self) -> None:
        self.run_worker(self._toggle_rollback_flow(), group="user-action", exclusive=True)

    async def _toggle_rollback_flow(self) -> None:
        svc = self._current_service()
        if svc is None:
            return
        settings = replace(svc.settings, auto_rollback=not svc.settings.auto_rollback)
        try:
            await self.api.put_service_settings(svc.id, settings)
            svc.settings = settings
            state = "on" if settings.auto_rollback else "off"
            self.status_message = f"Auto-rollback {state} for {svc.name}"
        except ApiError as e:
            self.status_message = f"Error: {e.message}"
        self._render()

    def _show_confirm(self, options: ConfirmOptions) -> None:
        self.push_screen(ConfirmScreen(options), callback=self.confirmer.resolve)

    async def _update_flow(self) -> None:
        svc = self._current_service()
        if svc is None or not isinstance(self.route, ServiceRoute):
            return
        status = service_row_status(svc)
        if status in (RowStatus.OK, RowStatus.BLOCKED, RowStatus.ARCH_MISMATCH):
            self.status_message = f"Update not available: {note_for(svc, status)}"
            self._render()
            return
        if self.selected_target is None:
            self.status_message = "No selectable target"
            self._render()
            return
        variant = "primary" if status == RowStatus.UPDATABLE else "danger"
        ok = await self.confirmer.confirm(ConfirmOptions(
            title=f"Update {svc.name}",
            body=f"{svc.image.tag} -> {self.selected_target.tag} ({status_label(status)})",
            confirm_text="Update",
            confirm_variant=variant,
        ))
        if not ok:
            return
        try:
            job_id = await self.api.trigger_update(
                "service", self.route.stack_id, svc.id,
                target_tag=self.selected_target.tag, target_digest=self.selected_target.digest,
            )
            self.status_message = f"Update job queued: {job_id}"
        except ApiError as e:
            self.status_message = f"Error: {e.message}"
        self._render()

    async def _check_flow(self) -> None:
        try:
            if isinstance(self.route, ServiceRoute):
                await self.api.trigger_check("service", self.route.stack_id, self.route.service_id)
            else:
                await self.api.trigger_check("all")
            self.status_message = "Check requested"
        except ApiError as e:
            self.status_message = f"Error: {e.message}"
        self._render()

    # Rendering

    def _render(self) -> None:
        if not self._ready:
            return
        self.query_one("#page", Static).update(self._render_page())
        self.query_one("#status", Static).update(
            f"supervisor: {describe_health(self.health.state)}  {self.status_message}"
        )

    def _render_page(self) -> Union[str, Text]:
        match self.route:
            case SupervisorMisrouteRoute():
                return self._render_misroute(self.route)
            case QueueRoute():
                return self._render_queue()
            case SettingsRoute():
                return self._render_settings()
            case ServiceRoute():
                return self._render_service()
            case _:
                return self._render_service_list()

    def _render_service_list(self) -> Text:
        out = Text()
        if isinstance(self.route, OverviewRoute):
            counts = count_statuses(s for _, s in self.services)
            summary = "  ".join(f"{status_label(k)}={v}" for k, v in counts.items())
            out.append(f"Filter: {self.candidate_filter}   {summary}\n\n")
        out.append(f"{'STACK':14} {'SERVICE':20} {'CURRENT':16} {'CANDIDATE':16} STATUS\n", style="bold")
        for idx, (stack_id, svc) in enumerate(self._visible_rows()):
            st = service_row_status(svc)
            marker = ">" if idx == self.selected_index else " "
            candidate = svc.candidate.tag if svc.candidate else "-"
            out.append(f"{marker}{stack_id[:13]:13} {svc.name[:20]:20} {svc.image.tag[:16]:16} {candidate[:16]:16} ")
            out.append(status_badge(st), style=TONE_STYLES[status_tone(st)])
            out.append(f"  {note_for(svc, st)}\n")
        return out

    def _render_service(self) -> str:
        svc = self._current_service()
        if svc is None:
            return "Loading..."
        st = service_row_status(svc)
        lines = [
            f"{svc.name}  [{status_badge(st)}]",
            f"Image: {svc.image.ref}:{svc.image.tag}",
            f"Note: {note_for(svc, st)}",
            f"Auto-rollback: {'on' if svc.settings.auto_rollback else 'off'}",
            "",
        ]
        r = self.resolver
        if r is None or r.loading:
            lines.append("Target: loading...")
        elif r.error:
            lines.append("Target: candidate list unavailable")
        elif not r.selectable:
            lines.append("Target: no selectable candidates")
        else:
            lines.append(f"Target: {svc.image.tag} -> {r.effective_tag}")
            lines += [f"  {'*' if o.tag == r.effective_tag else ' '} {r.option_label(o)}" for o in r.options]
        if self.app_config.is_dockrev_image_ref(svc.image.ref):
            url = self.app_config.self_upgrade_base_url()
            if self.health.allows_self_upgrade:
                lines += ["", f"Self-upgrade available at {url}"]
            else:
                lines += ["", f"Self-upgrade unavailable (supervisor {describe_health(self.health.state)})"]
        return "\n".join(lines)

    def _render_queue(self) -> str:
        lines = [f"{'JOB':24} {'TYPE':10} {'SCOPE':10} {'STATUS':10} CREATED"]
        for job in self.jobs:
            lines.append(f"{job.id[:24]:24} {job.type[:10]:10} {job.scope[:10]:10} {job.status[:10]:10} {job.created_at}")
        return "\n".join(lines)

    def _render_settings(self) -> str:
        runtime = self.app_config.get_runtime()
        return "\n".join([
            f"API: {runtime.api_base_url}",
            f"Self-upgrade URL: {self.app_config.self_upgrade_base_url()}",
            f"Dockrev image: {runtime.dockrev_image_repo}",
            f"Theme: {self.ui_theme}",
            f"Refresh interval: {self.app_config.get_refresh_interval()}s",
            f"Config file: {self.app_config.config_file}",
        ])

    def _render_misroute(self, route: SupervisorMisrouteRoute) -> str:
        base = route.base_path if route.base_path.endswith("/") else f"{route.base_path}/"
        lines = [
            f"Deployment problem: {base} is not routed to the Dockrev supervisor",
            f"Requested path: {route.pathname}",
            "The response came from the main Dockrev service, which usually means the",
            "reverse proxy is missing a route for the supervisor.",
            "",
            f"Expected entry: {self.app_config.self_upgrade_base_url()}",
            f"Supervisor status: {describe_health(self.health.state)}",
        ]
        if isinstance(self.health.state, HealthOffline):
            lines.append(f"Reason: {self.health.state.error}")
        lines += [
            "",
            "Verify these are answered by the supervisor:",
            f"  curl -i {base}health",
            f"  curl -i {base}version",
            f"  curl -i {base}self-upgrade",
            "",
            "[Esc] back to Dockrev   [r] retry",
        ]
        return "\n".join(lines)

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool:
        # If a modal screen is active, app-level bindings must not steal keys.
        if len(self.screen_stack) > 1:
            return False
        return True


def run(url: str = "/") -> None:
    app = DockrevTextualApp(address=AddressBar(url))
    app.run()
