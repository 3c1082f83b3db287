"""
ToolBrake CLI — run with `toolbrake` or `python -m toolbrake`

Commands:
  toolbrake [options] <command> [args...]   Proxy a stdio tool backend
  toolbrake check <config.yaml>             Validate a config file
  toolbrake --version                       Show version

Options (only before the backend command):
  --config FILE      Policy configuration (YAML or JSON)
  --log-level LEVEL  DEBUG, INFO, WARNING or ERROR (default INFO)
  --                 End of options
"""

from __future__ import annotations

import asyncio
import logging
import sys

USAGE = "Usage: toolbrake [--config FILE] [--log-level LEVEL] <command> [args...]"

logger = logging.getLogger("toolbrake")


def print_help() -> None:
    print(__doc__)


def cmd_version() -> None:
    from toolbrake import __version__

    print(f"toolbrake {__version__}")


def cmd_check(filepath: str) -> int:
    from toolbrake.config import build_chain, load_config

    try:
        config = load_config(filepath)
        chain = build_chain(config)
    except FileNotFoundError:
        print(f"File not found: {filepath}")
        return 1
    except Exception as e:
        print(f"Config error: {e}")
        return 1

    print(f"Config valid: {filepath}")
    print(f"   Agent: {config.agent.name} (trust: {config.agent.trust_level.value})")
    print(f"   Policies loaded: {len(chain)}")
    for p in chain.policies:
        print(f"   - {p.name}")
    return 0


def configure_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_run_args(args: list[str]) -> tuple[dict[str, str], list[str]]:
    """Split leading proxy options from the backend command line."""
    options: dict[str, str] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--":
            i += 1
            break
        if arg in ("--config", "--log-level"):
            if i + 1 >= len(args):
                raise ValueError(f"Option {arg} requires a value")
            options[arg[2:]] = args[i + 1]
            i += 2
            continue
        if arg.startswith("--config="):
            options["config"] = arg.split("=", 1)[1]
        elif arg.startswith("--log-level="):
            options["log-level"] = arg.split("=", 1)[1]
        else:
            break
        i += 1
    return options, args[i:]


def cmd_run(args: list[str]) -> int:
    from toolbrake.config import BrakeConfig, build_proxy, load_config
    from toolbrake.errors import BackendStartError

    try:
        options, command_line = parse_run_args(args)
    except ValueError as e:
        print(f"{e}\n{USAGE}", file=sys.stderr)
        return 1

    configure_logging(options.get("log-level", "INFO"))

    if not command_line:
        print(USAGE, file=sys.stderr)
        return 1

    config_path = options.get("config")
    try:
        config = load_config(config_path) if config_path else BrakeConfig()
    except Exception as e:
        logger.error("Failed to load configuration %s: %s", config_path, e)
        return 1

    command, command_args = command_line[0], command_line[1:]
    proxy = build_proxy(config, command, command_args)
    logger.info(
        "Starting ToolBrake for agent %s (trust=%s, policies=%s): %s",
        config.agent.name,
        config.agent.trust_level.value,
        [p.name for p in proxy.chain.policies],
        " ".join(command_line),
    )

    try:
        return asyncio.run(proxy.run())
    except BackendStartError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130
    finally:
        proxy.events.close()


def main() -> None:
    args = sys.argv[1:]

    if not args:
        print(USAGE, file=sys.stderr)
        sys.exit(1)
    elif args[0] == "--version":
        cmd_version()
    elif args[0] in ("--help", "-h"):
        print_help()
    elif args[0] == "check":
        if len(args) < 2:
            print("Usage: toolbrake check <config.yaml>")
            sys.exit(1)
        sys.exit(cmd_check(args[1]))
    else:
        sys.exit(cmd_run(args))


if __name__ == "__main__":
    main()
