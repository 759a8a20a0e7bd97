"""The dashboard state engine.

`Controller.handle(event)` folds one event into `AppState` and returns the
effects the engine must run next. It never awaits and never touches a
collaborator; everything that has to happen outside the state is returned as
an effect value, so every transition can be driven from a plain test.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..config import Settings
from .components import DevFilter, keyword_filter, visible_services
from .messages import (
    ActionCompleted,
    AwaitLogLine,
    CancelLogStream,
    ConfigLoaded,
    Effect,
    Event,
    Exit,
    FetchConfig,
    FetchFailed,
    FetchHostStats,
    FetchServices,
    HostStatsLoaded,
    KeyPressed,
    LogLine,
    LogStreamEnded,
    PerformAction,
    Resize,
    ServicesLoaded,
    StartLogStream,
    SubscriptionFailed,
    Tick,
)
from .models import (
    ACTION_PAST_TENSE,
    READY,
    ActionKind,
    ActiveSubscription,
    AppState,
    CancellationToken,
    LogBuffer,
)
from .render import compute_geometry

logger = logging.getLogger(__name__)


CONFIRM_KEYS = {"enter", "space", "tab", "l", "right"}
QUIT_KEYS = {"q", "ctrl+c"}
ACTION_KEYS: dict[str, ActionKind] = {
    "s": "start",
    "x": "stop",
    "r": "restart",
    "e": "enable",
    "E": "disable",
}
UP_KEYS = {"up", "k"}
DOWN_KEYS = {"down", "j"}
TOP_KEYS = {"home", "g"}
BOTTOM_KEYS = {"end", "G"}
PAGE_UP_KEYS = {"pageup", "left", "h"}
PAGE_DOWN_KEYS = {"pagedown", "right", "l"}

FETCH_LABELS = {
    "services": "Error listing units",
    "config": "Error reading config",
    "host": "Error reading host info",
}


class Controller:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dev_filter: DevFilter | None = None,
        state: AppState | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.dev_filter = dev_filter or keyword_filter(self.settings.dev_keywords)
        self.state = state or AppState(log_buffer=LogBuffer(self.settings.log_capacity))
        self._handlers: dict[type, Callable[..., list[Effect]]] = {
            KeyPressed: self._on_key,
            Resize: self._on_resize,
            Tick: self._on_tick,
            ServicesLoaded: self._on_services,
            LogLine: self._on_log_line,
            LogStreamEnded: self._on_stream_ended,
            SubscriptionFailed: self._on_subscription_failed,
            ConfigLoaded: self._on_config,
            HostStatsLoaded: self._on_host_stats,
            ActionCompleted: self._on_action,
            FetchFailed: self._on_fetch_failed,
        }

    def startup(self) -> list[Effect]:
        return [FetchServices(), FetchHostStats()]

    def handle(self, event: Event) -> tuple[AppState, list[Effect]]:
        try:
            handler = self._handlers[type(event)]
        except KeyError:
            raise TypeError(f"unhandled event type: {type(event).__name__}") from None
        return self.state, handler(event)

    # ---- helpers ----

    def set_status(self, message: str, transient: bool = True) -> None:
        s = self.state
        s.status_message = message
        s.status_transient = transient
        s.status_deadline = None

    def refilter(self, keep: str | None = None) -> None:
        """Recompute the visible rows from the current snapshot and toggles."""
        s = self.state
        if keep is None:
            current = s.selected_service()
            keep = current.name if current else None
        items = visible_services(
            s.services,
            self.dev_filter if s.dev_filter_on else None,
            s.listing.search,
        )
        s.listing.set_items(items, keep=keep)

    def _is_current(self, token: CancellationToken) -> bool:
        sub = self.state.subscription
        return sub is not None and sub.token is token

    # ---- input ----

    def _on_key(self, event: KeyPressed) -> list[Effect]:
        s = self.state
        key = event.key
        typing = s.view_mode != "dashboard" and s.active_pane == "list" and s.listing.searching

        if key == "ctrl+c" or (key in QUIT_KEYS and not typing):
            return self._quit()

        if s.view_mode == "dashboard":
            if key in CONFIRM_KEYS:
                s.view_mode = "list"
                s.active_pane = "list"
            return []

        if key == "tab":
            s.active_pane = "content" if s.active_pane == "list" else "list"
            return []

        if typing:
            self._search_key(event)
            return []

        if key == "d":
            s.dev_filter_on = not s.dev_filter_on
            self.refilter()
            self.set_status(f"Dev mode: {'on' if s.dev_filter_on else 'off'}")
            return []

        if s.active_pane == "list":
            return self._list_key(key)
        return self._content_key(key)

    def _list_key(self, key: str) -> list[Effect]:
        s = self.state
        listing = s.listing
        if key == "enter":
            return self._view_logs()
        if key == "c":
            return self._view_config()
        if key in ACTION_KEYS:
            svc = s.selected_service()
            if svc is None:
                return []
            return [PerformAction(ACTION_KEYS[key], svc.name)]
        if key == "/":
            listing.searching = True
            listing.search = ""
            self.refilter()
        elif key == "escape" and listing.search:
            listing.search = ""
            self.refilter()
        elif key in UP_KEYS:
            listing.move(-1)
        elif key in DOWN_KEYS:
            listing.move(1)
        elif key in TOP_KEYS:
            listing.home()
        elif key in BOTTOM_KEYS:
            listing.end()
        elif key in PAGE_UP_KEYS:
            listing.page(-1)
        elif key in PAGE_DOWN_KEYS:
            listing.page(1)
        return []

    def _search_key(self, event: KeyPressed) -> None:
        listing = self.state.listing
        key = event.key
        if key == "enter":
            listing.searching = False
            return
        if key == "escape":
            listing.searching = False
            listing.search = ""
        elif key == "backspace":
            listing.search = listing.search[:-1]
        elif event.character and len(event.character) == 1 and event.character.isprintable():
            listing.search += event.character
        else:
            return
        self.refilter()

    def _content_key(self, key: str) -> list[Effect]:
        s = self.state
        if key == "escape":
            s.active_pane = "list"
            return []
        total = len(s.content_lines())
        vp = s.viewport
        if key in UP_KEYS:
            vp.scroll(-1, total)
        elif key in DOWN_KEYS:
            vp.scroll(1, total)
        elif key in ("pageup", "b"):
            vp.page(-1, total)
        elif key in ("pagedown", "f", "space"):
            vp.page(1, total)
        elif key in TOP_KEYS:
            vp.goto_top()
        elif key in BOTTOM_KEYS:
            vp.goto_bottom(total)
        return []

    def _view_logs(self) -> list[Effect]:
        s = self.state
        s.view_mode = "logs"
        s.active_pane = "content"
        svc = s.selected_service()
        if svc is None:
            return []
        if s.subscription is not None and s.subscription.target == svc.name:
            # Already following this unit: keep the buffer and the stream
            s.viewport.goto_bottom(len(s.log_buffer))
            return []
        token = CancellationToken(svc.name)
        s.log_buffer.clear()
        s.subscription = ActiveSubscription(target=svc.name, token=token)
        s.viewport.goto_top()
        logger.debug("following logs of %s", svc.name)
        return [StartLogStream(token), AwaitLogLine(token)]

    def _view_config(self) -> list[Effect]:
        s = self.state
        s.view_mode = "config"
        s.active_pane = "content"
        s.viewport.goto_top()
        svc = s.selected_service()
        if svc is None:
            return []
        return [FetchConfig(svc.name)]

    def _quit(self) -> list[Effect]:
        s = self.state
        effects: list[Effect] = []
        if s.subscription is not None:
            effects.append(CancelLogStream(s.subscription.token))
            s.subscription = None
        s.running = False
        effects.append(Exit())
        return effects

    def _on_resize(self, event: Resize) -> list[Effect]:
        s = self.state
        s.width = max(0, event.width)
        s.height = max(0, event.height)
        geo = compute_geometry(s.width, s.height)
        s.listing.per_page = geo.rows_per_page
        total = len(s.content_lines())
        at_bottom = s.viewport.at_bottom(total)
        s.viewport.height = geo.viewport_height
        if s.view_mode == "logs" and at_bottom:
            s.viewport.goto_bottom(total)
        else:
            s.viewport.scroll(0, total)
        return []

    def _on_tick(self, event: Tick) -> list[Effect]:
        s = self.state
        cfg = self.settings
        s.spinner_frame += 1

        if s.status_transient:
            if s.status_deadline is None:
                s.status_deadline = event.now + cfg.status_seconds
            elif event.now >= s.status_deadline:
                self.set_status(READY, transient=False)

        if cfg.refresh_seconds <= 0:
            return []
        if s.last_refresh is None:
            s.last_refresh = event.now
        elif event.now - s.last_refresh >= cfg.refresh_seconds:
            s.last_refresh = event.now
            return [FetchServices()]
        return []

    # ---- background results ----

    def _on_services(self, event: ServicesLoaded) -> list[Effect]:
        current = self.state.selected_service()
        self.state.services = tuple(event.services)
        self.refilter(keep=current.name if current else None)
        return []

    def _on_log_line(self, event: LogLine) -> list[Effect]:
        s = self.state
        if not self._is_current(event.token):
            # Superseded subscription; its channel is never read again
            return []
        s.log_buffer.append(event.line)
        if s.view_mode == "logs":
            s.viewport.goto_bottom(len(s.log_buffer))
        return [AwaitLogLine(event.token)]

    def _on_stream_ended(self, event: LogStreamEnded) -> list[Effect]:
        if not self._is_current(event.token):
            return []
        target = event.token.target
        self.state.subscription = None
        if event.error:
            self.set_status(f"Log stream for {target} failed: {event.error}", transient=False)
        else:
            self.set_status(f"Log stream for {target} ended", transient=False)
        return []

    def _on_subscription_failed(self, event: SubscriptionFailed) -> list[Effect]:
        if not self._is_current(event.token):
            return []
        self.state.subscription = None
        self.set_status(f"Error: cannot stream logs for {event.token.target}: {event.error}", transient=False)
        return []

    def _on_config(self, event: ConfigLoaded) -> list[Effect]:
        s = self.state
        s.config_text = event.text
        s.config_name = event.name
        if s.view_mode == "config":
            s.viewport.goto_top()
        return []

    def _on_host_stats(self, event: HostStatsLoaded) -> list[Effect]:
        self.state.host = event.stats
        return []

    def _on_action(self, event: ActionCompleted) -> list[Effect]:
        if not event.ok:
            self.set_status(f"Error: {event.error}")
            return []
        self.set_status(f"{ACTION_PAST_TENSE.get(event.kind, event.kind)} {event.name}.")
        return [FetchServices()]

    def _on_fetch_failed(self, event: FetchFailed) -> list[Effect]:
        label = FETCH_LABELS.get(event.what, "Error")
        target = f" {event.name}" if event.name else ""
        self.set_status(f"{label}{target}: {event.error}")
        return []
