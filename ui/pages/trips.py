# triplog/ui/pages/trips.py
from __future__ import annotations

import flet as ft

from core.settings import UI
from models.trip import Trip
from services.backend import BackendError
from ui.dialogs import number_or_none, open_form_dialog, toast


_STATUS_LABELS = {
    "ongoing": "Em andamento",
    "completed": "Concluída",
}


class TripsPage:
    def __init__(self, app):
        self.app = app

        self.list_view = ft.ListView(expand=True, spacing=6, padding=ft.padding.symmetric(vertical=8))
        self.empty_text = ft.Text("Nenhuma viagem registrada.", color=UI.theme.text_subtle)
        self.add_btn = ft.FilledButton("Nova viagem", icon=ft.Icons.ADD, on_click=self._open_create)

        content = ft.Column(
            controls=[
                ft.Row(
                    [ft.Text("Viagens", size=24, weight=ft.FontWeight.BOLD), self.add_btn],
                    alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
                ),
                self.empty_text,
                self.list_view,
            ],
            expand=True,
            spacing=12,
        )
        self.view = ft.Container(content=content, expand=True, padding=20)

    # ---------- rendering ----------
    def load(self):
        trips = self.app.store.trips
        self.list_view.controls = [self._trip_tile(t) for t in trips]
        self.empty_text.visible = not trips
        self.app.page.update()

    def _trip_tile(self, trip: Trip) -> ft.Control:
        vehicles = {v.id: v for v in self.app.store.vehicles}
        names = [vehicles[v].nickname or vehicles[v].model for v in trip.vehicle_ids if v in vehicles]
        subtitle = f"{trip.departure_location or '—'} · {trip.departure_date} {trip.departure_time}".strip()
        if names:
            subtitle += " · " + ", ".join(names)

        chips = [ft.Text(_STATUS_LABELS.get(trip.status, trip.status), size=12, color=UI.theme.text_subtle)]
        if trip.is_local:
            chips.append(
                ft.Container(
                    ft.Text("pendente", size=11),
                    bgcolor=UI.theme.pending_chip,
                    padding=ft.padding.symmetric(horizontal=6, vertical=2),
                    border_radius=8,
                )
            )

        menu = ft.PopupMenuButton(
            items=[
                ft.PopupMenuItem(text="Editar", icon=ft.Icons.EDIT, on_click=lambda e, t=trip: self._open_edit(t)),
                ft.PopupMenuItem(text="Nova parada", icon=ft.Icons.PLACE, on_click=lambda e, t=trip: self._open_stop(t)),
                ft.PopupMenuItem(
                    text="Vincular veículo",
                    icon=ft.Icons.DIRECTIONS_CAR,
                    on_click=lambda e, t=trip: self._open_link(t),
                ),
                ft.PopupMenuItem(
                    text="Desvincular veículos",
                    icon=ft.Icons.LINK_OFF,
                    on_click=lambda e, t=trip: self._unlink_all(t),
                ),
                ft.PopupMenuItem(
                    text="Finalizar",
                    icon=ft.Icons.FLAG,
                    on_click=lambda e, t=trip: self._finish(t),
                ),
                ft.PopupMenuItem(text="Excluir", icon=ft.Icons.DELETE, on_click=lambda e, t=trip: self._delete(t)),
            ]
        )

        stops = [
            ft.Text(f"• {s.name or s.place or 'Parada'} ({s.arrival_date} {s.arrival_time})", size=12)
            for s in trip.stops
        ]
        return ft.Card(
            content=ft.Container(
                padding=10,
                content=ft.Column(
                    [
                        ft.ListTile(
                            title=ft.Text(trip.name or "Sem nome", weight=ft.FontWeight.W_600),
                            subtitle=ft.Text(subtitle),
                            trailing=menu,
                        ),
                        ft.Row(chips, spacing=8),
                        *stops,
                    ],
                    spacing=4,
                ),
            )
        )

    # ---------- actions ----------
    def _run(self, action, success: str | None = None):
        try:
            action()
        except BackendError as exc:
            toast(self.app.page, str(exc))
            return
        except ValueError as exc:
            toast(self.app.page, str(exc))
            return
        if success:
            toast(self.app.page, success)
        self.load()

    def _open_create(self, _):
        fields = {
            "name": ft.TextField(label="Nome", autofocus=True),
            "departure_location": ft.TextField(label="Origem"),
            "departure_date": ft.TextField(label="Data (dd/MM/yyyy)"),
            "departure_time": ft.TextField(label="Hora (HH:mm)"),
            "start_km": ft.TextField(label="Km inicial", keyboard_type=ft.KeyboardType.NUMBER),
            "details": ft.TextField(label="Detalhes", multiline=True),
        }

        def _save(f):
            data = {
                "name": f["name"].value.strip(),
                "departure_location": f["departure_location"].value.strip(),
                "departure_date": f["departure_date"].value.strip(),
                "departure_time": f["departure_time"].value.strip(),
                "start_km": number_or_none(f["start_km"].value),
                "details": f["details"].value.strip() or None,
            }
            if not data["name"]:
                raise ValueError("Informe o nome da viagem.")
            self.app.trips.create_trip(data)
            self.load()

        open_form_dialog(self.app.page, title="Nova viagem", fields=fields, on_save=_save)

    def _open_edit(self, trip: Trip):
        fields = {
            "name": ft.TextField(label="Nome", value=trip.name),
            "arrival_location": ft.TextField(label="Destino", value=trip.arrival_location or ""),
            "end_km": ft.TextField(label="Km final", value="" if trip.end_km is None else str(trip.end_km)),
            "details": ft.TextField(label="Detalhes", value=trip.details or "", multiline=True),
        }

        def _save(f):
            self.app.trips.update_trip(
                trip.id,
                {
                    "name": f["name"].value.strip(),
                    "arrival_location": f["arrival_location"].value.strip() or None,
                    "end_km": number_or_none(f["end_km"].value),
                    "details": f["details"].value.strip() or None,
                },
            )
            self.load()

        open_form_dialog(self.app.page, title="Editar viagem", fields=fields, on_save=_save)

    def _open_stop(self, trip: Trip):
        fields = {
            "name": ft.TextField(label="Nome"),
            "arrival_date": ft.TextField(label="Data (dd/MM/yyyy)"),
            "arrival_time": ft.TextField(label="Hora (HH:mm)"),
            "arrival_km": ft.TextField(label="Km na chegada"),
            "cost": ft.TextField(label="Custo (R$)"),
            "was_driving": ft.Checkbox(label="Dirigindo?"),
        }

        def _save(f):
            try:
                self.app.stops.save_stop(
                    {
                        "trip_id": trip.id,
                        "name": f["name"].value.strip(),
                        "arrival_date": f["arrival_date"].value.strip(),
                        "arrival_time": f["arrival_time"].value.strip(),
                        "arrival_km": number_or_none(f["arrival_km"].value),
                        "cost": number_or_none(f["cost"].value) or 0.0,
                        "was_driving": bool(f["was_driving"].value),
                    }
                )
            except BackendError as exc:
                # the stop was kept locally
                toast(self.app.page, str(exc))
            self.load()

        open_form_dialog(self.app.page, title="Nova parada", fields=fields, on_save=_save)

    def _open_link(self, trip: Trip):
        vehicles = [v for v in self.app.store.vehicles if v.active]
        if not vehicles:
            toast(self.app.page, "Cadastre um veículo primeiro.")
            return
        fields = {
            "vehicle": ft.Dropdown(
                label="Veículo",
                options=[ft.dropdown.Option(v.id, v.nickname or f"{v.make} {v.model}") for v in vehicles],
            ),
            "initial_km": ft.TextField(label="Km inicial do veículo"),
        }

        def _save(f):
            if not f["vehicle"].value:
                raise ValueError("Selecione um veículo.")
            self.app.trips.link_vehicle_to_trip(trip.id, f["vehicle"].value, number_or_none(f["initial_km"].value))
            self.load()

        open_form_dialog(self.app.page, title="Vincular veículo", fields=fields, on_save=_save)

    def _unlink_all(self, trip: Trip):
        self._run(lambda: self.app.trips.unlink_all_vehicles_from_trip(trip.id), "Veículos desvinculados")

    def _finish(self, trip: Trip):
        self._run(lambda: self.app.trips.update_trip(trip.id, {"status": "completed"}), "Viagem finalizada")

    def _delete(self, trip: Trip):
        self._run(lambda: self.app.trips.delete_trip(trip.id), "Viagem excluída")
