from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from .config import Config, RunSpec, load_config
from .errors import ConfigError
from .logging_utils import bind_run_id, setup_logging
from .orchestrate import STATUS_FAILED, Orchestrator


def _add_scope_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", default="config.yaml")
    parser.add_argument("--competition", help="Only run scopes for this competition id")
    parser.add_argument("--season", help="Only run scopes for this season label")
    parser.add_argument("--log-level", help="Defaults to MATCHSTATS_LOG_LEVEL or INFO")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="matchstats-etl")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Fetch, dedupe, persist and aggregate each scope")
    _add_scope_args(sync)
    sync.add_argument("--sources", help="Comma-separated source names")
    sync.add_argument("--reimport", action="store_true", help="Replace stored events of re-fetched matches")
    sync.add_argument("--retry-skipped", action="store_true", help="Only re-request pages skipped by the last run")
    sync.add_argument("--no-reconcile", action="store_true")

    rebuild = sub.add_parser("rebuild", help="Recompute stat lines from stored events")
    _add_scope_args(rebuild)

    recon = sub.add_parser("reconcile", help="Compare stored stat lines with the official feeds")
    _add_scope_args(recon)

    return parser.parse_args(argv)


def select_specs(
    cfg: Config,
    competition: str | None = None,
    season: str | None = None,
    sources: list[str] | None = None,
) -> list[RunSpec]:
    specs = cfg.run_specs()
    if competition:
        specs = [s for s in specs if s.competition_id == competition]
    if season:
        specs = [s for s in specs if s.season_label == season]
    if competition and season and not specs:
        # ad-hoc scope not listed in the config file
        specs = [cfg.run_spec({"competition_id": competition, "season_label": season})]
    if sources:
        unknown = [s for s in sources if s not in cfg.sources]
        if unknown:
            raise ConfigError(f"unknown sources: {unknown}")
        for spec in specs:
            spec.sources = [s for s in spec.sources if s in sources]
    if not specs:
        raise ConfigError("no scopes selected")
    return specs


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logger = setup_logging(args.log_level)
    cfg = load_config(args.config)
    specs = select_specs(cfg, args.competition, args.season, _parse_only(getattr(args, "sources", None)))
    orchestrator = Orchestrator(cfg, logger)
    bind_run_id(orchestrator.run_id)

    async def _run() -> dict:
        loop = asyncio.get_running_loop()
        if sys.platform != "win32":
            loop.add_signal_handler(signal.SIGINT, orchestrator.request_cancel)
            loop.add_signal_handler(signal.SIGTERM, orchestrator.request_cancel)
        try:
            if args.command == "sync":
                return await orchestrator.run(
                    specs,
                    reimport=args.reimport,
                    retry_skipped_only=args.retry_skipped,
                    run_reconciliation=not args.no_reconcile,
                )
            if args.command == "rebuild":
                return await orchestrator.rebuild(specs)
            return await orchestrator.reconcile_only(specs)
        finally:
            await orchestrator.close()

    summary = asyncio.run(_run())
    failed = [s for s in summary["scopes"] if s["status"] == STATUS_FAILED]
    return 1 if failed else 0


def _parse_only(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


if __name__ == "__main__":
    sys.exit(main())
