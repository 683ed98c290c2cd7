from typing import Callable, Dict

import flet as ft


def toast(page: ft.Page, text: str):
    page.snack_bar = ft.SnackBar(ft.Text(text))
    page.snack_bar.open = True
    page.update()


def close_dialog(page: ft.Page, dlg: ft.AlertDialog | None):
    if not dlg:
        return
    dlg.open = False
    if dlg in page.overlay:
        page.overlay.remove(dlg)
    page.update()


def open_form_dialog(
    page: ft.Page,
    *,
    title: str,
    fields: Dict[str, ft.Control],
    on_save: Callable[[Dict[str, ft.Control]], None],
    save_label: str = "Salvar",
    width: int = 480,
) -> ft.AlertDialog:
    """Modal form; ``on_save`` gets the field controls and closes it on success.

    An exception raised by ``on_save`` is shown under the fields and keeps the
    dialog open.
    """

    error_text = ft.Text("", color=ft.Colors.ERROR, visible=False)
    dlg: ft.AlertDialog | None = None

    def _cancel(_):
        close_dialog(page, dlg)

    def _save(_):
        try:
            on_save(fields)
        except (ValueError, RuntimeError) as exc:
            error_text.value = str(exc)
            error_text.visible = True
            page.update()
            return
        close_dialog(page, dlg)

    dlg = ft.AlertDialog(
        modal=True,
        title=ft.Text(title),
        content=ft.Container(
            width=width,
            content=ft.Column(
                list(fields.values()) + [error_text],
                spacing=10,
                tight=True,
                scroll=ft.ScrollMode.ADAPTIVE,
            ),
        ),
        actions=[
            ft.TextButton("Cancelar", on_click=_cancel),
            ft.FilledButton(save_label, icon=ft.Icons.SAVE, on_click=_save),
        ],
        actions_alignment=ft.MainAxisAlignment.END,
    )
    dlg.on_dismiss = _cancel
    page.overlay.append(dlg)
    dlg.open = True
    page.update()
    return dlg


def number_or_none(value: str | None) -> float | None:
    text = (value or "").strip().replace(",", ".")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"Número inválido: {value}") from None
