import asyncio
import json
import sys

import structlog

from usageprobe.cli import parse_args
from usageprobe.collector import Collector, FetchOutcome
from usageprobe.config import Config
from usageprobe.context import ProbeContext
from usageprobe.errors import NoCredentialsError
from usageprobe.logging import mask_secret, setup_logging
from usageprobe.metrics import FetchMetrics
from usageprobe.provider.registry import PROVIDER_NAMES, build_registry
from usageprobe.session import CLAUDE_SESSION, extract_browser_session, find_workos_tokens

logger = structlog.get_logger()


def _format_outcome(outcome: "FetchOutcome") -> "str":
    if outcome.snapshot is None:
        return f"{outcome.provider}: error: {outcome.error}"
    snapshot = outcome.snapshot
    lines = [f"{outcome.provider} ({snapshot.source}, {outcome.source_label})"]
    for slot, window in snapshot.windows().items():
        line = f"  {slot}: {window.used_percent:.0f}% used"
        if window.window_minutes:
            line += f" / {window.window_minutes} min"
        if window.reset_description:
            line += f" ({window.reset_description})"
        lines.append(line)
    if snapshot.credits_remaining is not None:
        lines.append(f"  credits: {snapshot.credits_remaining:g}")
    if snapshot.cost is not None:
        cost = snapshot.cost
        lines.append(f"  spend: {cost.used:.2f} / {cost.limit:.2f} {cost.currency_code}")
    identity = [
        value
        for value in (snapshot.account_email, snapshot.account_organization, snapshot.login_method)
        if value
    ]
    if identity:
        lines.append(f"  account: {', '.join(identity)}")
    return "\n".join(lines)


def _print_outcomes(outcomes: "list[FetchOutcome]", as_json: "bool") -> "None":
    if as_json:
        body = {
            outcome.provider: (
                outcome.snapshot.to_dict()
                if outcome.snapshot is not None
                else {"error": str(outcome.error), "kind": outcome.error.kind}
            )
            for outcome in outcomes
        }
        print(json.dumps(body, indent=2))
        return
    for outcome in outcomes:
        print(_format_outcome(outcome))


def _print_sessions() -> "None":
    try:
        session = extract_browser_session(CLAUDE_SESSION)
    except NoCredentialsError as e:
        print(str(e))
    else:
        print(
            f"{CLAUDE_SESSION.provider}: {session.source_label} "
            f"{mask_secret(session.session_key)} ({session.cookie_count} cookies)"
        )
    for tokens in find_workos_tokens():
        print(f"workos: {tokens.source_label} {mask_secret(tokens.refresh_token)}")


async def run(config: "Config") -> "list[FetchOutcome]":
    context = ProbeContext(metrics=FetchMetrics())
    collector = Collector(build_registry(context, config), context.metrics)
    try:
        return await collector.fetch_all(config.settings())
    finally:
        await collector.close()
        await context.close()


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level)

    if config.show_sessions:
        _print_sessions()
        return

    unknown = [name for name in config.providers if name not in PROVIDER_NAMES]
    if unknown:
        raise SystemExit(
            f"Unknown providers: {', '.join(unknown)}. "
            f"Choose from {', '.join(PROVIDER_NAMES)}."
        )

    logger.info("probe_start", providers=config.providers, debug_mode=config.debug_mode)
    outcomes = asyncio.run(run(config))
    _print_outcomes(outcomes, config.json_output)
    if not any(outcome.ok for outcome in outcomes):
        sys.exit(1)


if __name__ == "__main__":
    main()
