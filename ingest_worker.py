#!/usr/bin/env python3
"""Theme ingestion worker.

Commands:
- seed <theme.json>          create a theme with config, terms and domain rules
- trigger <theme>            run one ingestion and poll it until terminal
- trigger <theme> --every N  trigger every N minutes (scheduled runs)
- status <theme> <job_id>    print a job's status view
- budget <theme> [--reset]   print (or reset) today's extraction budget
"""

from __future__ import annotations

import argparse
import json
import sys
import time

import schedule

from newsharvest.bootstrap import build_coordinator, build_store, configure_logging
from newsharvest.config import load_settings
from newsharvest.errors import NewsharvestError
from newsharvest.ingestion.article_types import WeightedTerm
from newsharvest.pipeline.dispatch import ThreadDispatcher

POLL_INTERVAL_SEC = 2.0


def seed_theme(store, path: str) -> None:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    theme = store.create_theme(data["name"], data.get("slug") or data["name"].lower().replace(" ", "-"), data.get("description"))
    config = store.add_config_version(theme.id, **(data.get("config") or {}))
    store.set_topic_terms(
        theme.id,
        [WeightedTerm(name=t["name"], weight=float(t.get("weight", 1.0))) for t in data.get("terms") or []],
    )
    for r in data.get("domainRules") or []:
        store.upsert_domain_rule(theme.id, r["domain"], r["rule"])
    print(f"[seed] theme={theme.slug} id={theme.id} config=v{config.version}")


def run_trigger(coordinator, dispatcher, theme_ref: str, trigger_type: str, wait_timeout: float) -> None:
    result = coordinator.trigger(theme_ref, trigger_type=trigger_type)
    print(
        f"[ingest] job={result.ingestion_job_id} status={result.status} found={result.urls_found} "
        f"processed={result.urls_processed} remaining_budget={result.remaining_budget}"
    )
    theme = coordinator.resolve_theme(theme_ref)
    deadline = time.monotonic() + wait_timeout
    while True:
        view = coordinator.tracker.status(result.ingestion_job_id, theme_id=theme.id)
        print(f"[ingest] {view.progress:3d}% {view.status_message}")
        if view.status in ("completed", "failed") or time.monotonic() > deadline:
            break
        time.sleep(POLL_INTERVAL_SEC)
    dispatcher.wait_idle(timeout=max(0.0, deadline - time.monotonic()))


def run_scheduled(coordinator, dispatcher, theme_ref: str, minutes: int, wait_timeout: float) -> None:
    def _job():
        try:
            run_trigger(coordinator, dispatcher, theme_ref, "scheduled", wait_timeout)
        except NewsharvestError as e:
            print(f"[ingest] scheduled run skipped: {e}")

    schedule.every(minutes).minutes.do(_job)
    _job()
    while True:
        schedule.run_pending()
        time.sleep(5)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="newsharvest ingestion worker")
    sub = parser.add_subparsers(dest="command", required=True)

    p_seed = sub.add_parser("seed", help="create a theme from a JSON file")
    p_seed.add_argument("path")

    p_trigger = sub.add_parser("trigger", help="run an ingestion for a theme")
    p_trigger.add_argument("theme")
    p_trigger.add_argument("--every", type=int, default=0, help="repeat every N minutes")
    p_trigger.add_argument("--wait", type=float, default=600.0, help="max seconds to wait for completion")

    p_status = sub.add_parser("status", help="show an ingestion job")
    p_status.add_argument("theme")
    p_status.add_argument("job_id")

    p_budget = sub.add_parser("budget", help="show or reset today's budget")
    p_budget.add_argument("theme")
    p_budget.add_argument("--reset", action="store_true")

    args = parser.parse_args(argv)
    settings = load_settings()
    configure_logging(settings)
    store = build_store(settings)
    dispatcher = ThreadDispatcher()
    coordinator = build_coordinator(settings, store, dispatcher=dispatcher)

    try:
        if args.command == "seed":
            seed_theme(store, args.path)
        elif args.command == "trigger":
            if args.every > 0:
                run_scheduled(coordinator, dispatcher, args.theme, args.every, args.wait)
            else:
                run_trigger(coordinator, dispatcher, args.theme, "manual", args.wait)
        elif args.command == "status":
            theme = coordinator.resolve_theme(args.theme)
            view = coordinator.tracker.status(args.job_id, theme_id=theme.id)
            print(json.dumps(view.to_dict(), indent=2))
        elif args.command == "budget":
            theme = coordinator.resolve_theme(args.theme)
            config = coordinator.resolve_config(theme)
            if args.reset:
                usage = coordinator.budget.reset(theme.id, config.daily_budget)
            else:
                usage = coordinator.budget.usage(theme.id, config.daily_budget)
            print(f"[budget] theme={theme.slug} " + " ".join(f"{k}={v}" for k, v in usage.to_dict().items()))
    except NewsharvestError as e:
        print(f"[error] {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
