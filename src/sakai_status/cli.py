"""Command line entry point."""

import argparse
import sys

from sakai_status import __version__
from sakai_status.app import StatusConsole
from sakai_status.config import load_config
from sakai_status.dispatcher import build_dispatcher
from sakai_status.errors import ConfigError
from sakai_status.log import configure_logging
from sakai_status.server import build_reports, serve


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sakai-status", description="Plain-text runtime status reports."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-c", "--config", help="YAML configuration file")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("serve", help="serve the reports over HTTP")
    console = commands.add_parser("console", help="browse the reports in the terminal")
    console.add_argument(
        "--poll-rate", type=float, default=2.0, help="seconds between refreshes (default: 2.0)"
    )
    report = commands.add_parser("report", help="print one report and exit")
    report.add_argument("path", help="report path, e.g. /tomcat/threadgroups")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"sakai-status: {e}", file=sys.stderr)
        return 2

    configure_logging(config.log_level, json=config.json_logs)

    if args.command == "serve":
        serve(config)
        return 0

    dispatcher = build_dispatcher(build_reports(config))
    if args.command == "console":
        StatusConsole(dispatcher, poll_rate=args.poll_rate).run()
    else:
        sys.stdout.write(dispatcher.render(args.path))
    return 0


if __name__ == "__main__":
    sys.exit(main())
