# ui/pages/settings.py
import flet as ft

from core.settings import UI
from datetime_utils import parse_rfc3339
from services.auth import AuthError
from services.backend import BackendError


class SettingsPage:
    def __init__(self, app):
        self.app = app

        self.account_status = ft.Text()
        self.email_tf = ft.TextField(label="E-mail", width=280)
        self.password_tf = ft.TextField(label="Senha", password=True, can_reveal_password=True, width=280)
        self.sign_in_btn = ft.ElevatedButton("Entrar", icon=ft.Icons.LOGIN, on_click=self.sign_in)
        self.sign_up_btn = ft.OutlinedButton("Criar conta", icon=ft.Icons.PERSON_ADD, on_click=self.sign_up)
        self.sign_out_btn = ft.OutlinedButton("Sair", icon=ft.Icons.LOGOUT, on_click=self.sign_out)

        self.connectivity_status = ft.Text()
        self.queue_status = ft.Text()
        self.failed_status = ft.Text()
        self.last_sync = ft.Text()
        self.last_error = ft.Text(color=ft.Colors.ERROR)

        self.sync_btn = ft.ElevatedButton("Sincronizar agora", icon=ft.Icons.SYNC, on_click=self.sync_now)
        self.discard_btn = ft.OutlinedButton(
            "Descartar falhas",
            icon=ft.Icons.DELETE_SWEEP,
            on_click=self.discard_failed,
        )
        self.refresh_log_btn = ft.TextButton("Atualizar log", icon=ft.Icons.ARTICLE, on_click=self.refresh_log)
        self.log_view = ft.Text("", selectable=True, size=12)

        content = ft.Column(
            controls=[
                ft.Text("Configurações", size=24, weight=ft.FontWeight.BOLD),
                ft.Text("Conta", size=18, weight=ft.FontWeight.W_600),
                self.account_status,
                ft.Row([self.email_tf, self.password_tf], spacing=12, wrap=True),
                ft.Row([self.sign_in_btn, self.sign_up_btn, self.sign_out_btn], spacing=12),
                ft.Divider(),
                ft.Text("Sincronização", size=18, weight=ft.FontWeight.W_600),
                self.connectivity_status,
                self.queue_status,
                self.failed_status,
                self.last_sync,
                self.last_error,
                ft.Row([self.sync_btn, self.discard_btn], spacing=12),
                ft.Column([
                    ft.Text("Log de sincronização", size=18, weight=ft.FontWeight.W_600),
                    ft.Container(self.log_view, height=220, padding=10, bgcolor=UI.theme.safe_surface_bg),
                    self.refresh_log_btn,
                ], spacing=8),
            ],
            expand=True,
            spacing=12,
            scroll=ft.ScrollMode.ADAPTIVE,
        )

        self.view = ft.Container(content=content, expand=True, padding=20)

    def _format_dt(self, value) -> str:
        dt = parse_rfc3339(value) if isinstance(value, str) else value
        if not dt:
            return "—"
        return dt.astimezone().strftime("%d/%m/%Y %H:%M:%S")

    def load(self):
        auth = self.app.auth
        if not self.app.backend.configured:
            self.account_status.value = "Serviço indisponível. Supabase não configurado."
        elif auth.is_authenticated:
            self.account_status.value = f"Conectado como {auth.email or auth.user_id}"
        else:
            self.account_status.value = "Não autenticado. Os dados ficam apenas neste dispositivo."
        self.sign_out_btn.disabled = not auth.is_authenticated

        status = self.app.sync_status() or {}
        self.connectivity_status.value = "Online" if self.app.connectivity.online else "Offline"
        self.queue_status.value = f"Operações pendentes: {status.get('queueSize', 0)}"
        failed = status.get("failed", 0)
        self.failed_status.value = f"Operações com falha definitiva: {failed}"
        self.discard_btn.disabled = not failed
        self.last_sync.value = "Última sincronização: " + self._format_dt(status.get("lastSyncAt"))
        self.last_error.value = status.get("lastError") or ""
        self.sync_btn.disabled = bool(status.get("syncing") or status.get("backgroundSyncing"))

        self.log_view.value = self.app.read_sync_log(UI.sync_log_lines)
        self.app.page.update()

    # ---------- account ----------
    def sign_in(self, _):
        try:
            self.app.sign_in(self.email_tf.value or "", self.password_tf.value or "")
        except (AuthError, BackendError) as e:
            self.account_status.value = str(e)
            self.app.page.update()
            return
        self.password_tf.value = ""
        self.load()

    def sign_up(self, _):
        try:
            user_id = self.app.auth.sign_up(self.email_tf.value or "", self.password_tf.value or "")
        except (AuthError, BackendError) as e:
            self.account_status.value = str(e)
            self.app.page.update()
            return
        if user_id is None:
            self.account_status.value = "Conta criada. Confirme o e-mail para entrar."
            self.app.page.update()
            return
        self.app.after_sign_in()
        self.load()

    def sign_out(self, _):
        self.app.sign_out()
        self.load()

    # ---------- sync ----------
    def sync_now(self, _):
        self.app.request_sync()

    def discard_failed(self, _):
        self.app.sync.discard_failed()
        self.load()

    def refresh_log(self, _):
        self.log_view.value = self.app.read_sync_log(UI.sync_log_lines)
        self.app.page.update()
