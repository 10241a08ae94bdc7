import argparse
import json
import os
import sys
from datetime import datetime
from pathlib import Path

from .client import DEFAULT_SERVER_URL, list_runs, trigger_run, wait_for_run


def get_server_url() -> str:
    """
    Get the mirror server URL from environment variable or use default.

    Environment variables:
    - MIRROR_SERVER_URL: Custom server URL
    """
    return os.environ.get("MIRROR_SERVER_URL", DEFAULT_SERVER_URL)


def get_token(cli_arg: str | None = None) -> str | None:
    """
    Get the API token from multiple sources in priority order.

    Priority (highest to lowest):
    1. Command line argument (--token)
    2. Environment variable (MIRROR_API_TOKEN)
    3. Config file (~/.mirror/config)

    Config file format (~/.mirror/config):
        token=abc123...
    """
    if cli_arg:
        return cli_arg

    env_token = os.environ.get("MIRROR_API_TOKEN")
    if env_token:
        return env_token

    config_path = Path.home() / ".mirror" / "config"
    if config_path.exists():
        try:
            for line in config_path.read_text().splitlines():
                line = line.strip()
                if line.startswith("token="):
                    return line[len("token=") :].strip()
        except OSError as e:
            print(f"Warning: cannot read {config_path}: {e}", file=sys.stderr)

    return None


def format_time(time_str: str | None) -> str:
    """Format ISO timestamp to human-readable format."""
    if not time_str:
        return "N/A"
    try:
        dt = datetime.fromisoformat(time_str.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, AttributeError):
        return time_str


def format_success(success: bool | None) -> str:
    """Format success value to human-readable string."""
    if success is None:
        return "-"
    return "✓" if success else "✗"


def print_event(event: dict) -> None:
    if event["type"] == "step":
        print(f"==> {event['data']}", flush=True)
    elif event["type"] == "log":
        print(event["data"], end="", flush=True)


def cmd_trigger(args: argparse.Namespace, server_url: str) -> int:
    result = trigger_run(
        server_url=server_url,
        token=get_token(args.token),
        ref=args.ref,
        message=args.message,
    )
    if result["status"] == "skipped":
        print(f"Run {result['run_id']} skipped: {result['skip_reason']}")
        return 0

    print(f"Run queued: {result['run_id']}")
    if not args.wait:
        return 0

    success = False
    for event in wait_for_run(result["run_id"], server_url=server_url, from_beginning=True):
        print_event(event)
        if event["type"] == "complete":
            success = event["success"]
    return 0 if success else 1


def cmd_wait(args: argparse.Namespace, server_url: str) -> int:
    success = False
    for event in wait_for_run(
        args.run_id, server_url=server_url, from_beginning=args.from_beginning
    ):
        print_event(event)
        if event["type"] == "complete":
            success = event["success"]
    return 0 if success else 1


def cmd_list(args: argparse.Namespace, server_url: str) -> int:
    runs = list_runs(server_url=server_url, status=args.status)

    if args.json_mode:
        print(json.dumps(runs, indent=2))
        return 0

    if not runs:
        print("No runs found.")
        return 0

    print(f"{'RUN ID':<38} {'STATUS':<10} {'COMMIT':<10} {'CREATED':<20} {'SUCCESS':<8}")
    print("-" * 90)
    for run in runs:
        commit = (run.get("head_commit_id") or "-")[:8]
        print(
            f"{run['run_id']:<38} {run['status']:<10} {commit:<10} "
            f"{format_time(run.get('created_at')):<20} {format_success(run.get('success')):<8}"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the mirror CLI."""
    parser = argparse.ArgumentParser(description="Subrepo mirror CLI")
    subparsers = parser.add_subparsers(dest="command")

    # mirror trigger [--ref REF] [--message MSG] [--wait] [--token TOKEN]
    trigger_parser = subparsers.add_parser("trigger", help="Queue a mirror run")
    trigger_parser.add_argument("--ref", help="Ref to mirror (default: server's branch)")
    trigger_parser.add_argument(
        "--message", default="manual trigger", help="Message the loop guard checks"
    )
    trigger_parser.add_argument(
        "--wait", action="store_true", help="Stream the run's log until it finishes"
    )
    trigger_parser.add_argument(
        "--token",
        help="API token (can also use MIRROR_API_TOKEN env var or ~/.mirror/config)",
    )

    # mirror wait <run_id> [--all]
    wait_parser = subparsers.add_parser("wait", help="Wait for a run and stream its log")
    wait_parser.add_argument("run_id", help="Run ID to wait for")
    wait_parser.add_argument(
        "--all",
        dest="from_beginning",
        action="store_true",
        help="Show the whole log (default: only new events)",
    )

    # mirror list [--status STATUS] [--json]
    list_parser = subparsers.add_parser("list", help="List runs")
    list_parser.add_argument("--status", help="Only list runs in this status")
    list_parser.add_argument(
        "--json", dest="json_mode", action="store_true", help="Output in JSON format"
    )

    args = parser.parse_args(argv)
    server_url = get_server_url()

    commands = {"trigger": cmd_trigger, "wait": cmd_wait, "list": cmd_list}
    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        return commands[args.command](args, server_url)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\n\nStopped. The run continues on the server.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
