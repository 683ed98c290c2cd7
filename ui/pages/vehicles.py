# triplog/ui/pages/vehicles.py
from __future__ import annotations

import flet as ft

from core.settings import UI
from models.vehicle import SyncStatus, Vehicle
from services.backend import BackendError
from ui.dialogs import number_or_none, open_form_dialog, toast


_SYNC_CHIPS = {
    SyncStatus.PENDING: ("pendente", UI.theme.pending_chip),
    SyncStatus.ERROR: ("erro de sincronização", UI.theme.error_chip),
}


class VehiclesPage:
    def __init__(self, app):
        self.app = app
        self._photo_target: str | None = None

        self.file_picker = ft.FilePicker(on_result=self._on_photo_picked)
        if self.file_picker not in self.app.page.overlay:
            self.app.page.overlay.append(self.file_picker)

        self.list_view = ft.ListView(expand=True, spacing=6)
        self.empty_text = ft.Text("Nenhum veículo cadastrado.", color=UI.theme.text_subtle)
        self.add_btn = ft.FilledButton("Novo veículo", icon=ft.Icons.ADD, on_click=self._open_create)

        content = ft.Column(
            controls=[
                ft.Row(
                    [ft.Text("Veículos", size=24, weight=ft.FontWeight.BOLD), self.add_btn],
                    alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
                ),
                self.empty_text,
                self.list_view,
            ],
            expand=True,
            spacing=12,
        )
        self.view = ft.Container(content=content, expand=True, padding=20)

    def load(self):
        vehicles = self.app.store.vehicles
        self.list_view.controls = [self._vehicle_tile(v) for v in vehicles]
        self.empty_text.visible = not vehicles
        self.app.page.update()

    def _vehicle_tile(self, vehicle: Vehicle) -> ft.Control:
        title = vehicle.nickname or f"{vehicle.make} {vehicle.model}".strip() or "Veículo"
        details = " · ".join(p for p in (vehicle.license_plate, vehicle.color, ", ".join(vehicle.fuels)) if p)
        trailing = [
            ft.IconButton(ft.Icons.PHOTO_CAMERA, tooltip="Foto", on_click=lambda e, v=vehicle: self._pick_photo(v)),
            ft.IconButton(ft.Icons.EDIT, tooltip="Editar", on_click=lambda e, v=vehicle: self._open_edit(v)),
            ft.IconButton(ft.Icons.DELETE, tooltip="Excluir", on_click=lambda e, v=vehicle: self._delete(v)),
        ]
        chip = _SYNC_CHIPS.get(vehicle.sync_status)
        leading = (
            ft.Image(src=vehicle.photo_url, width=48, height=48, fit=ft.ImageFit.COVER, border_radius=6)
            if vehicle.photo_url
            else ft.Icon(ft.Icons.DIRECTIONS_CAR)
        )
        subtitle = [ft.Text(details or "—", size=12)]
        if chip:
            subtitle.append(
                ft.Container(
                    ft.Text(chip[0], size=11),
                    bgcolor=chip[1],
                    padding=ft.padding.symmetric(horizontal=6, vertical=2),
                    border_radius=8,
                )
            )
        if not vehicle.active:
            subtitle.append(ft.Text("inativo", size=11, color=UI.theme.text_subtle))
        return ft.ListTile(
            leading=leading,
            title=ft.Text(title, weight=ft.FontWeight.W_600),
            subtitle=ft.Row(subtitle, spacing=8),
            trailing=ft.Row(trailing, tight=True, spacing=0),
        )

    # ---------- forms ----------
    def _fields(self, vehicle: Vehicle | None = None) -> dict:
        v = vehicle
        return {
            "nickname": ft.TextField(label="Apelido", value=v.nickname if v else ""),
            "make": ft.TextField(label="Marca", value=v.make if v else ""),
            "model": ft.TextField(label="Modelo", value=v.model if v else ""),
            "year": ft.TextField(label="Ano", value=str(v.year) if v and v.year else ""),
            "license_plate": ft.TextField(label="Placa", value=v.license_plate if v else ""),
            "fuels": ft.TextField(label="Combustíveis (separados por vírgula)", value=", ".join(v.fuels) if v else ""),
            "km_initial": ft.TextField(
                label="Km inicial", value="" if not v or v.km_initial is None else str(v.km_initial)
            ),
            "active": ft.Switch(label="Ativo", value=v.active if v else True),
        }

    @staticmethod
    def _collect(f: dict) -> dict:
        year = number_or_none(f["year"].value)
        return {
            "nickname": f["nickname"].value.strip(),
            "make": f["make"].value.strip(),
            "model": f["model"].value.strip(),
            "year": int(year) if year is not None else None,
            "license_plate": f["license_plate"].value.strip().upper(),
            "fuels": [x.strip() for x in (f["fuels"].value or "").split(",") if x.strip()],
            "km_initial": number_or_none(f["km_initial"].value),
            "active": bool(f["active"].value),
        }

    def _open_create(self, _):
        def _save(f):
            self.app.trips.create_vehicle(self._collect(f))
            self.load()

        open_form_dialog(self.app.page, title="Novo veículo", fields=self._fields(), on_save=_save)

    def _open_edit(self, vehicle: Vehicle):
        def _save(f):
            self.app.trips.update_vehicle(vehicle.id, self._collect(f))
            self.load()

        open_form_dialog(self.app.page, title="Editar veículo", fields=self._fields(vehicle), on_save=_save)

    def _delete(self, vehicle: Vehicle):
        try:
            self.app.trips.delete_vehicle(vehicle.id)
        except (BackendError, ValueError) as exc:
            toast(self.app.page, str(exc))
            return
        toast(self.app.page, "Veículo excluído")
        self.load()

    # ---------- photo ----------
    def _pick_photo(self, vehicle: Vehicle):
        self._photo_target = vehicle.id
        self.file_picker.pick_files(allow_multiple=False, file_type=ft.FilePickerFileType.IMAGE)

    def _on_photo_picked(self, e: ft.FilePickerResultEvent):
        target, self._photo_target = self._photo_target, None
        if not target or not e.files or not e.files[0].path:
            return
        updated = self.app.trips.upload_vehicle_photo(target, e.files[0].path)
        toast(self.app.page, "Foto enviada" if updated else "Não foi possível enviar a foto.")
        self.load()
