import argparse

from usageprobe.config import CLAUDE_SOURCES, CODEX_SOURCES, Config
from usageprobe.provider.registry import PROVIDER_NAMES


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="usageprobe",
        description="Fetch normalized usage snapshots for AI assistant accounts",
    )
    parser.add_argument(
        "--provider",
        dest="providers",
        action="append",
        choices=[*PROVIDER_NAMES, "all"],
        help="Provider to fetch, repeatable (default: USAGEPROBE_PROVIDERS or claude,codex)",
    )
    parser.add_argument(
        "--debug",
        dest="debug_mode",
        action="store_true",
        default=None,
        help="Honor explicit source selections (advanced mode)",
    )
    parser.add_argument(
        "--claude.source",
        dest="claude_source",
        choices=CLAUDE_SOURCES,
        help="Claude source, used with --debug",
    )
    parser.add_argument(
        "--claude.web-extras",
        dest="claude_web_extras",
        action="store_true",
        default=None,
        help="Add web spend data to Claude CLI snapshots, used with --debug",
    )
    parser.add_argument(
        "--codex.source",
        dest="codex_source",
        choices=CODEX_SOURCES,
        help="Codex source, used with --debug",
    )
    parser.add_argument(
        "--keep-cli-sessions",
        dest="keep_cli_sessions_alive",
        action="store_true",
        default=None,
        help="Keep CLI processes alive between fetches",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print snapshots as JSON",
    )
    parser.add_argument(
        "--sessions",
        dest="show_sessions",
        action="store_true",
        help="List the browser sessions that were found and exit",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default=None,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: USAGEPROBE_LOG_LEVEL or info)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    if args.providers:
        config.providers = (
            list(PROVIDER_NAMES) if "all" in args.providers else list(dict.fromkeys(args.providers))
        )
    # flags only override the environment when given
    for name in (
        "debug_mode",
        "claude_source",
        "claude_web_extras",
        "codex_source",
        "keep_cli_sessions_alive",
        "log_level",
    ):
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)
    config.json_output = args.json_output
    config.show_sessions = args.show_sessions
    return config
