from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m queuev.app desk                      # registration desk (MQTT)
#     python -m queuev.app checkin --queue-id ID --category NAME --name WHO
#     python -m queuev.app panel                     # Tkinter notification panel
#     python -m queuev.app create ...                # run the wizard non-interactively
#     python -m queuev.app listing ...               # management listing / CSV export
#
# `desk`, `checkin` and `panel` hand their flags to the module's own main().

import argparse
import logging
import sys
from datetime import date, datetime, time

from .config import Settings, add_backend_args, add_mqtt_args, open_auth, open_store, shared_backend_error
from .errors import AuthError, PersistenceError, ValidationError


def main(argv: list[str] | None = None) -> int:
    defaults = Settings.from_env()
    parser = argparse.ArgumentParser(description="Queue management (MQTT + document store) - main entrypoint")
    parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ...")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_desk = sub.add_parser("desk", help="Start the registration desk")
    add_mqtt_args(p_desk, defaults)
    add_backend_args(p_desk, defaults)

    p_chk = sub.add_parser("checkin", help="Send one check-in request to the desk")
    add_mqtt_args(p_chk, defaults)
    p_chk.add_argument("--queue-id", required=True)
    p_chk.add_argument("--category", required=True)
    p_chk.add_argument("--name", required=True)

    p_panel = sub.add_parser("panel", help="Open the notification panel")
    add_mqtt_args(p_panel, defaults)
    add_backend_args(p_panel, defaults)
    p_panel.add_argument("--refresh-ms", type=int, default=250)

    p_create = sub.add_parser("create", help="Create a queue (steps 1-4 of the wizard)")
    add_backend_args(p_create, defaults)
    _add_account_args(p_create)
    p_create.add_argument("--queue-name", required=True)
    p_create.add_argument("--address", required=True)
    p_create.add_argument("--date", type=date.fromisoformat, help="YYYY-MM-DD (default: today)")
    p_create.add_argument("--time", type=time.fromisoformat, help="HH:MM (default: now)")
    p_create.add_argument(
        "--category", action="append", default=[], metavar="NAME[:LIMIT]", help="repeat for several categories"
    )
    p_create.add_argument("--invite", action="append", default=[], metavar="CATEGORY=EMAIL")
    p_create.add_argument("--notes", default="")

    p_list = sub.add_parser("listing", help="Show the registrations you may manage")
    add_backend_args(p_list, defaults)
    _add_account_args(p_list)
    p_list.add_argument("--tab", default=None, help="category to show (default: first)")
    p_list.add_argument("--csv", default=None, metavar="PATH", help="also write the view as CSV")
    p_list.add_argument("--remove", action="append", default=[], metavar="ENTRY_ID", help="delete a registration first")

    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.cmd == "desk":
        from .desk import main as run

        run(_mqtt_argv(args) + _backend_argv(args))
        return 0

    if args.cmd == "checkin":
        from .checkin import main as run

        run(["--queue-id", args.queue_id, "--category", args.category, "--name", args.name, *_mqtt_argv(args)])
        return 0

    if args.cmd == "panel":
        from .gui import main as run

        run([*_mqtt_argv(args), *_backend_argv(args), "--refresh-ms", str(args.refresh_ms)])
        return 0

    settings = Settings.from_args(args, defaults)
    if args.cmd == "create":
        return _create(args, settings)
    return _listing(args, settings)


def _add_account_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--email", required=True)
    p.add_argument("--password", required=True)
    p.add_argument("--sign-up", metavar="DISPLAY_NAME", default=None, help="create the account first")


def _mqtt_argv(args: argparse.Namespace) -> list[str]:
    return ["--mqtt-host", args.mqtt_host, "--mqtt-port", str(args.mqtt_port), "--namespace", args.namespace]


def _backend_argv(args: argparse.Namespace) -> list[str]:
    return ["--backend", args.backend, "--cache-dir", args.cache_dir]


def _sign_in(auth, args: argparse.Namespace):
    from .auth import friendly_auth_message

    try:
        if args.sign_up is not None:
            username = args.email.split("@", 1)[0]
            return auth.sign_up(args.sign_up, args.email, username, args.password)
        return auth.sign_in(args.email, args.password)
    except AuthError as e:
        print(f"[auth] {friendly_auth_message(str(e))}", file=sys.stderr)
        return None


def _parse_category(text: str) -> tuple[str, str | None]:
    name, sep, limit = text.rpartition(":")
    if not sep or not limit.strip().isdigit():
        return text.strip(), None
    return name.strip(), limit.strip()


def _create(args: argparse.Namespace, settings: Settings) -> int:
    from .draft import DraftCache, DraftStore
    from .wizard import QueueWizard

    store = open_store(settings)
    auth = open_auth(settings, store)
    if _sign_in(auth, args) is None:
        return 1

    drafts = DraftStore(cache=DraftCache(settings.cache_path))
    # Flags describe the whole queue; an interrupted earlier draft is discarded.
    drafts.reset()
    wizard = QueueWizard(drafts, store=store, auth=auth)
    try:
        now = datetime.now()
        wizard.set_queue_name(args.queue_name)
        wizard.set_address(args.address)
        wizard.set_schedule(args.date or now.date(), args.time or now.time().replace(second=0, microsecond=0))
        wizard.next()
        wizard.next()

        positions: dict[str, int] = {}
        for item in args.category:
            name, limit = _parse_category(item)
            positions[name] = wizard.add_category(name, limit=limit)
        for item in args.invite:
            name, _, email = item.partition("=")
            if name.strip() not in positions:
                print(f"[create] no category {name.strip()!r} for invite {email}", file=sys.stderr)
                return 2
            wizard.invite_staff(positions[name.strip()], email)
        wizard.set_notes(args.notes)
        navigation = wizard.generate()
    except ValidationError as e:
        for fld, message in e.errors.items():
            print(f"[create] {fld}: {message}", file=sys.stderr)
        return 2
    except PersistenceError as e:
        print(f"[create] {e}. {e.retry_prompt}", file=sys.stderr)
        return 1

    for warning in wizard.view().warnings:
        print(f"[create] warning: {warning}")
    print(f"[create] queue {navigation.params['queueId']} saved")
    return 0


def _listing(args: argparse.Namespace, settings: Settings) -> int:
    from .access import (
        ListingState,
        accessible_categories,
        build_listing,
        csv_filename,
        filter_registrations,
        load_rows,
        remove_entry,
        to_csv,
    )

    problem = shared_backend_error(settings, "listing")
    if problem:
        print(problem, file=sys.stderr)
        return 2

    store = open_store(settings)
    auth = open_auth(settings, store)
    user = _sign_in(auth, args)
    if user is None:
        return 1

    accessible = accessible_categories(store, user)
    if args.remove:
        # Only rows the user could see in the listing may be removed.
        allowed = {row["id"] for row in filter_registrations(load_rows(store), accessible)}
        for entry_id in args.remove:
            if entry_id not in allowed:
                print(f"[listing] no registration {entry_id} you may manage", file=sys.stderr)
                return 1
            remove_entry(store, entry_id)
            print(f"[listing] removed {entry_id}")

    view = build_listing(load_rows(store), accessible, args.tab)
    if view.state is ListingState.NO_ACCESS:
        print(f"[listing] {view.message}")
        return 0

    print("[listing] " + " | ".join(t.upper() if t == view.active_tab else t for t in view.tabs))
    if view.state is ListingState.EMPTY:
        print(f"[listing] {view.message}")
    for row in view.rows:
        print(f"{row.number:>4}  {row.name:<30} {row.time_in}")

    if args.csv:
        path = args.csv if not args.csv.endswith("/") else args.csv + csv_filename(view)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(to_csv(view))
        print(f"[listing] wrote {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
