from __future__ import annotations

# Notification panel (Tkinter).
#
# Shows "X registered in the Y queue." lines as check-ins arrive from the
# desk, with an unread badge on the toggle button.
#
# Architecture:
# - MQTT callbacks run on a background thread managed by paho-mqtt.
# - Tkinter must be updated from the main UI thread.
# - The NotificationCenter listener therefore pushes PanelState snapshots into
#   a Queue which is polled via `root.after(...)`.

import argparse
import queue
import time
import tkinter as tk
from tkinter import ttk
from typing import Any, cast

from .config import Settings
from .feeds import open_feed
from .mqtt_client import MqttClient
from .notifications import NotificationCenter, PanelState
from .persistence import REGISTRATIONS
from .timefmt import format_when
from .topics import registrations_all


def badge_text(state: PanelState) -> str:
    """Label for the toggle button."""
    label = "Hide notifications" if state.is_open else "Notifications"
    return f"{label} ●" if state.has_unread else label


class NotificationPanelApp:
    def __init__(self, settings: Settings, *, refresh_ms: int = 250) -> None:
        self.settings = settings
        self.refresh_ms = refresh_ms

        self.root = tk.Tk()
        self.root.title("Queue Notifications")
        self.root.geometry("560x380")

        # Top bar: connection info + toggle
        top = ttk.Frame(self.root)
        top.pack(fill=cast(Any, tk.X), padx=10, pady=(10, 5))
        self.info_var = tk.StringVar(value="Connecting...")
        ttk.Label(top, textvariable=self.info_var).pack(side=cast(Any, tk.LEFT))
        self.toggle_var = tk.StringVar(value="Notifications")
        ttk.Button(top, textvariable=self.toggle_var, command=self.toggle).pack(side=cast(Any, tk.RIGHT))

        cols = ("message", "when")
        self.tree = ttk.Treeview(self.root, columns=cols, show="headings", height=12)
        self.tree.heading("message", text="Notification")
        self.tree.heading("when", text="When")
        self.tree.column("message", width=360, anchor=cast(Any, tk.W))
        self.tree.column("when", width=160, anchor=cast(Any, tk.W))

        if settings.backend == "firestore":
            help_text = "Live updates from Firestore collection group: " + REGISTRATIONS
        else:
            help_text = "Live updates from MQTT topic: " + registrations_all(settings.namespace)
        self.help = ttk.Label(self.root, text=help_text)
        self.help.pack(side=cast(Any, tk.BOTTOM), fill=cast(Any, tk.X), padx=10, pady=(0, 10))

        self._inbox: "queue.Queue[PanelState]" = queue.Queue(maxsize=5)

        # Only the MQTT feed needs a broker connection.
        self._mqtt: MqttClient | None = None
        if settings.backend != "firestore":
            self._mqtt = MqttClient(
                client_id=f"panel-{int(time.time())}", host=settings.mqtt_host, port=settings.mqtt_port
            )
        self.center = NotificationCenter()
        self._remove_listener = self.center.add_listener(self._on_state)

        self.root.protocol("WM_DELETE_WINDOW", self.close)

    def start(self) -> None:
        # If the feed can't connect, keep the UI alive and show the error.
        s = self.settings
        try:
            if self._mqtt is not None:
                self._mqtt.start()
            self.center.start(open_feed(s, self._mqtt))
            if self._mqtt is not None:
                self.info_var.set(f"Connected to MQTT {s.mqtt_host}:{s.mqtt_port} | namespace={s.namespace}")
            else:
                self.info_var.set(f"Connected to Firestore | project={s.firebase_project_id or 'default'}")
        except Exception as e:
            self.info_var.set(f"Connection failed: {e}")

        self.root.after(cast(Any, self.refresh_ms), self._drain_inbox)
        self.root.mainloop()

    def close(self) -> None:
        try:
            self._remove_listener()
            self.center.stop()
            if self._mqtt is not None:
                self._mqtt.stop()
        finally:
            self.root.destroy()

    def toggle(self) -> None:
        if self.center.state().is_open:
            self.tree.pack_forget()
            self._render(self.center.close_panel())
        else:
            self.tree.pack(fill=cast(Any, tk.BOTH), expand=True, padx=10, pady=5)
            self._render(self.center.open_panel())

    # -------------------- MQTT thread callback --------------------

    def _on_state(self, state: PanelState) -> None:
        try:
            self._inbox.put_nowait(state)
        except queue.Full:
            # Only the latest state matters; the next poll picks it up.
            pass

    # -------------------- UI thread polling --------------------

    def _drain_inbox(self) -> None:
        latest: PanelState | None = None
        while True:
            try:
                latest = self._inbox.get_nowait()
            except queue.Empty:
                break
        if latest is not None:
            # Re-read so a dropped update is never the last one rendered.
            self._render(self.center.state())
        self.root.after(cast(Any, self.refresh_ms), self._drain_inbox)

    def _render(self, state: PanelState) -> None:
        self.toggle_var.set(badge_text(state))
        for item in self.tree.get_children():
            self.tree.delete(item)

        if state.loading:
            self.tree.insert("", cast(Any, tk.END), values=("Loading...", ""))
            return
        if not state.notifications:
            self.tree.insert("", cast(Any, tk.END), values=("No new notifications", ""))
            return
        for n in state.notifications:
            self.tree.insert("", cast(Any, tk.END), values=(n.message, format_when(n.created_at)))


def main(argv: list[str] | None = None) -> None:
    from .config import add_backend_args, add_mqtt_args

    defaults = Settings.from_env()
    parser = argparse.ArgumentParser(description="Notification panel (Tkinter + MQTT or Firestore)")
    add_mqtt_args(parser, defaults)
    add_backend_args(parser, defaults)
    parser.add_argument("--refresh-ms", type=int, default=250)
    args = parser.parse_args(argv)

    app = NotificationPanelApp(Settings.from_args(args, defaults), refresh_ms=args.refresh_ms)
    app.start()


if __name__ == "__main__":
    main()
