# triplog/main.py
import flet as ft

from core.logs import ensure_logger
from core.settings import APP_NAME, UI
from storage.db import init_db
from ui.app_shell import AppShell


def configure_page(page: ft.Page) -> None:
    page.title = UI.app_title
    page.theme_mode = ft.ThemeMode(UI.theme_mode)
    page.theme = ft.Theme(color_scheme_seed=UI.color_scheme_seed)
    page.dark_theme = ft.Theme(color_scheme_seed=UI.color_scheme_seed)
    page.appbar = ft.AppBar(
        title=ft.Text(APP_NAME),
        center_title=False,
        leading=ft.Icon(ft.Icons.DIRECTIONS_CAR),
    )
    page.padding = 0
    page.window.min_width = UI.window_min_width
    page.window.min_height = UI.window_min_height


def main(page: ft.Page):
    configure_page(page)
    init_db()
    ensure_logger("triplog.app").info("Starting %s", APP_NAME)

    shell = AppShell(page)
    page.on_disconnect = lambda _: shell.unmount()
    shell.mount()


if __name__ == "__main__":
    ft.app(target=main)
