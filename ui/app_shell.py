# ui/app_shell.py
from __future__ import annotations

import asyncio
import flet as ft

from core.logs import ensure_logger, read_log_tail
from core.settings import UI

from .pages.trips import TripsPage
from .pages.vehicles import VehiclesPage
from .pages.settings import SettingsPage

from services.auth import BackendAuth
from services.backend import Backend, BackendError
from services.cache_store import CacheStore
from services.connectivity import ConnectivityMonitor
from services.pending_ops_queue import PendingOpsQueue
from services.segments import SegmentService
from services.stops import StopService
from services.sync_service import SyncOrchestrator, SyncPhase
from services.trip_store import TripStore
from services.trips import TripService


class AppShell:
    def __init__(self, page: ft.Page):
        self.page = page
        self.logger = ensure_logger("triplog.sync")

        self.page.horizontal_alignment = ft.CrossAxisAlignment.STRETCH
        self.page.vertical_alignment = ft.MainAxisAlignment.START

        # --- data layer (before the pages) ---
        self.backend = Backend()
        self.auth = BackendAuth(self.backend)
        self.connectivity = ConnectivityMonitor()
        self.cache = CacheStore()
        self.queue = PendingOpsQueue()
        self.store = TripStore()
        parts = (self.backend, self.auth, self.connectivity, self.store, self.cache)
        self.segments = SegmentService(*parts)
        self.trips = TripService(*parts, queue=self.queue, segments=self.segments)
        self.stops = StopService(*parts, segments=self.segments)
        self.sync = SyncOrchestrator(self.trips, self.queue, self.store)

        # --- pages ---
        self._trips_page = TripsPage(self)
        self._vehicles_page = VehiclesPage(self)
        self._settings_page = SettingsPage(self)
        self._pages = [self._trips_page, self._vehicles_page, self._settings_page]
        self._active = 0

        self.banner_text = ft.Text("", size=13)
        self.banner = ft.Container(
            self.banner_text,
            padding=ft.padding.symmetric(horizontal=16, vertical=6),
            visible=False,
        )
        self.content = ft.Container(expand=True)

        self.nav = ft.NavigationRail(
            selected_index=0,
            label_type=ft.NavigationRailLabelType.ALL,
            min_width=90,
            min_extended_width=200,
            group_alignment=-0.9,
            on_change=self.on_nav_change,
            destinations=[
                ft.NavigationRailDestination(
                    icon=ft.Icons.MAP_OUTLINED,
                    selected_icon=ft.Icons.MAP,
                    label="Viagens",
                ),
                ft.NavigationRailDestination(
                    icon=ft.Icons.DIRECTIONS_CAR_OUTLINED,
                    selected_icon=ft.Icons.DIRECTIONS_CAR,
                    label="Veículos",
                ),
                ft.NavigationRailDestination(
                    icon=ft.Icons.SETTINGS_OUTLINED,
                    selected_icon=ft.Icons.SETTINGS,
                    label="Configurações",
                ),
            ],
        )

        self.root = ft.Row(
            controls=[
                ft.Container(self.nav, width=88, bgcolor=UI.theme.safe_surface_bg),
                ft.VerticalDivider(width=1),
                ft.Column([self.banner, self.content], expand=True, spacing=0),
            ],
            expand=True,
            spacing=0,
        )

        self._watch_task = None
        self._running = False

        self.store.subscribe(self._on_store_changed)
        self.sync.subscribe(self._on_phase_changed)
        self.connectivity.subscribe(self._on_connectivity_changed)

    # ---------- mounting ----------
    def mount(self):
        self.page.controls.clear()
        self.page.add(self.root)

        try:
            self.auth.restore()
        except BackendError as exc:
            self.logger.warning("Session restore failed: %s", exc)
        self.trips.load()

        self.content.content = self._trips_page.view
        self._update_banner()
        self._trips_page.load()

        self._running = True
        self._watch_task = self.page.run_task(self._background)

    async def _background(self):
        """Bind the orchestrator to this loop, sync once, then keep probing connectivity."""

        self.sync.bind(self.connectivity, asyncio.get_running_loop())
        if self.connectivity.online and self.queue.count():
            await self.sync.run_cycle()
        await self.connectivity.watch(should_continue=lambda: self._running)

    def unmount(self):
        self._running = False
        try:
            if self._watch_task:
                self._watch_task.cancel()
        except Exception:
            pass
        self._watch_task = None

    # ---------- navigation ----------
    def on_nav_change(self, e: ft.ControlEvent):
        self._active = int(e.control.selected_index)
        page = self._pages[self._active]
        self.content.content = page.view
        page.load()

    def _refresh_active(self):
        try:
            self._pages[self._active].load()
        except Exception as exc:
            self.logger.error("Refreshing page failed: %s", exc)

    # ---------- listeners ----------
    def _on_store_changed(self):
        self._refresh_active()

    def _on_phase_changed(self, _phase: SyncPhase):
        self._update_banner()
        self._refresh_active()

    def _on_connectivity_changed(self, _online: bool):
        self._update_banner()
        self._refresh_active()

    def _update_banner(self):
        phase = self.sync.phase
        if phase.syncing:
            text, color = "Sincronizando…", UI.theme.syncing_bg
        elif phase.background_syncing:
            text, color = "Sincronizando em segundo plano…", UI.theme.background_sync_bg
        elif not self.connectivity.online:
            text, color = "Offline: alterações serão enviadas quando a conexão voltar.", UI.theme.offline_bg
        elif self.store.error:
            text, color = self.store.error, UI.theme.offline_bg
        else:
            text, color = "", None
        self.banner_text.value = text
        self.banner.bgcolor = color
        self.banner.visible = bool(text)
        self.page.update()

    # ---------- public helpers for the pages ----------
    def request_sync(self) -> None:
        self.page.run_task(self.sync.run_cycle)

    def sign_in(self, email: str, password: str) -> None:
        self.auth.sign_in(email, password)
        self.after_sign_in()

    def after_sign_in(self) -> None:
        self.trips.load()
        self._update_banner()
        if self.queue.count():
            self.request_sync()

    def sign_out(self) -> None:
        self.auth.sign_out()
        self.trips.load_cached()
        self._update_banner()

    def sync_status(self) -> dict:
        return self.sync.status()

    def read_sync_log(self, lines: int = 100) -> str:
        return read_log_tail(lines)
