import anyio
import argparse
from pathlib import Path
from src.toolrouter.cli import (
    DEFAULT_YAML,
    cmd_categories,
    cmd_check,
    cmd_disable,
    cmd_disable_all,
    cmd_enable,
    cmd_enable_all,
    cmd_rollback,
    cmd_set_state,
    cmd_status,
)
from src.utils.logger import configure_logging


def parse_args():
    parser = argparse.ArgumentParser(description="Tool router migration control")
    parser.add_argument(
        "--state-file", type=Path, default=DEFAULT_YAML,
        help=f"Path to the feature-flag YAML (default: {DEFAULT_YAML})"
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="WARNING"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # status
    sub.add_parser("status", help="Show migration state and rollback history")

    # categories
    sub.add_parser("categories", help="List categories, their tools and current routes")

    # set-state
    set_state = sub.add_parser("set-state", help="Change the migration state")
    set_state.add_argument(
        "state", help="legacy, hybrid, new_with_fallback or new_only"
    )

    # enable / disable
    enable = sub.add_parser("enable", help="Route a category through the new path (hybrid)")
    enable.add_argument("category")
    disable = sub.add_parser("disable", help="Route a category through legacy (hybrid)")
    disable.add_argument("category")
    sub.add_parser("enable-all", help="Enable every category")
    sub.add_parser("disable-all", help="Disable every category")

    # rollback
    rollback = sub.add_parser("rollback", help="Emergency rollback to legacy")
    rollback.add_argument("--reason", type=str, default=None)
    rollback.add_argument("--trigger", type=str, default=None, help="Named rollback trigger to fire")

    # check
    sub.add_parser("check", help="Connect an in-process client and report routes")

    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    configure_logging(level=args.log_level)

    if args.command == "status":
        print(cmd_status(yaml_path=args.state_file))

    elif args.command == "categories":
        print(cmd_categories(yaml_path=args.state_file))

    elif args.command == "set-state":
        print(cmd_set_state(args.state, yaml_path=args.state_file))

    elif args.command == "enable":
        print(cmd_enable(args.category, yaml_path=args.state_file))

    elif args.command == "disable":
        print(cmd_disable(args.category, yaml_path=args.state_file))

    elif args.command == "enable-all":
        print(cmd_enable_all(yaml_path=args.state_file))

    elif args.command == "disable-all":
        print(cmd_disable_all(yaml_path=args.state_file))

    elif args.command == "rollback":
        print(cmd_rollback(reason=args.reason, trigger=args.trigger, yaml_path=args.state_file))

    elif args.command == "check":
        async def _check():
            return await cmd_check(yaml_path=args.state_file)
        result = anyio.run(_check)
        print(result)
