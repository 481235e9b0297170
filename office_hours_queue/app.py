from __future__ import annotations

# Single-entrypoint runner.
#
#     python -m office_hours_queue.app serve [--store sqlite --db-path PATH]
#     python -m office_hours_queue.app professor --professor-id ID --name NAME
#     python -m office_hours_queue.app student --professor-id ID --name NAME
#     python -m office_hours_queue.app list
#
# Each subcommand forwards to the owning module's own `main()`.

import argparse
import sys

from .config import add_logging_args, add_mqtt_args, add_store_args


def main() -> None:
    parser = argparse.ArgumentParser(description="Office Hours Queue (MQTT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_serve = sub.add_parser("serve", help="Start the queue coordinator service")
    add_mqtt_args(p_serve)
    add_store_args(p_serve)
    add_logging_args(p_serve)
    p_serve.add_argument("--publish-listing-every", type=float, default=10.0)

    p_prof = sub.add_parser("professor", help="Open a professor dashboard in the terminal")
    add_mqtt_args(p_prof)
    p_prof.add_argument("--professor-id", required=True)
    p_prof.add_argument("--name", required=True)
    p_prof.add_argument("--office", default="")

    p_stud = sub.add_parser("student", help="Join a professor's queue and wait")
    add_mqtt_args(p_stud)
    p_stud.add_argument("--professor-id", required=True)
    p_stud.add_argument("--name", required=True)
    p_stud.add_argument("--contact", default="")

    p_list = sub.add_parser("list", help="Show professors currently holding office hours")
    add_mqtt_args(p_list)

    args = parser.parse_args()
    mqtt_args = ["--mqtt-host", args.mqtt_host, "--mqtt-port", str(args.mqtt_port), "--namespace", args.namespace]

    if args.cmd == "serve":
        from .service import main as run

        run_args = [
            *mqtt_args,
            "--store",
            args.store,
            "--db-path",
            args.db_path,
            "--busy-timeout",
            str(args.busy_timeout),
            "--poll-interval",
            str(args.poll_interval),
            "--log-level",
            args.log_level,
            "--publish-listing-every",
            str(args.publish_listing_every),
        ]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "professor":
        from .professor import main as run

        run_args = [
            *mqtt_args,
            "--professor-id",
            args.professor_id,
            "--name",
            args.name,
            "--office",
            args.office,
        ]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "student":
        from .student import main as run

        run_args = [
            *mqtt_args,
            "--professor-id",
            args.professor_id,
            "--name",
            args.name,
            "--contact",
            args.contact,
        ]
        _dispatch_to_module_main(run, run_args)
        return

    if args.cmd == "list":
        from .student import main as run

        _dispatch_to_module_main(run, [*mqtt_args, "--list"])
        return


def _dispatch_to_module_main(module_main, argv: list[str]) -> None:
    old_argv = sys.argv[:]
    try:
        sys.argv = [old_argv[0], *argv]
        module_main()
    finally:
        sys.argv = old_argv


if __name__ == "__main__":
    main()
