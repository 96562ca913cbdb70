"""
Command line entry points.

    legacy-migrate migrate --customers-file customers.json
    legacy-migrate migrate --space did:key:z6Mk... --cid bafy... --verify-only
    legacy-migrate plan --instances 5 --segments 8
    legacy-migrate monitor --failed

Collaborators are supplied by a factory named in ``LEGACY_MIGRATE_COLLABORATORS``
(or ``--collaborators``) as ``package.module:function``. The factory receives
the MigrationSettings and returns a Collaborators bundle, directly or as an
awaitable.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import Any

from legacymigrate.config import MigrationSettings, PlannerConfig
from legacymigrate.exceptions import LegacyMigrationError
from legacymigrate.models import SingleStepMode
from legacymigrate.monitor import (
    MigrationMonitor,
    format_customer,
    format_failed,
    format_instance,
    format_overall,
    format_space,
    format_stuck,
)
from legacymigrate.orchestrator import MigrationOrchestrator, RunTarget, load_customers_file
from legacymigrate.planner import (
    PartitionPlanner,
    estimate_migration_time,
    format_analysis,
    format_distribution,
    format_estimates,
    parse_include_filter,
)
from legacymigrate.protocols import Collaborators
from legacymigrate.report import format_summary
from legacymigrate.repositories import open_progress_store

logger = logging.getLogger(__name__)


def load_collaborators_factory(reference: str) -> Any:
    """
    Resolve a ``module:attribute`` reference to a collaborators factory.

    Raises:
        ValueError: If the reference is malformed or does not name a callable.
    """
    module_name, sep, attribute = reference.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:factory', got {reference!r}")
    target: Any = importlib.import_module(module_name)
    for part in attribute.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise ValueError(f"{reference} is not callable")
    return target


async def build_collaborators(settings: MigrationSettings) -> Collaborators:
    if not settings.collaborators:
        raise ValueError(
            "No collaborators configured; set LEGACY_MIGRATE_COLLABORATORS "
            "or pass --collaborators module:factory"
        )
    factory = load_collaborators_factory(settings.collaborators)
    result = factory(settings)
    if inspect.isawaitable(result):
        result = await result
    if not isinstance(result, Collaborators):
        raise ValueError(
            f"{settings.collaborators} returned {type(result).__name__}, not Collaborators"
        )
    return result


def _single_step(args: argparse.Namespace) -> SingleStepMode | None:
    return SingleStepMode(args.single_step) if args.single_step else None


async def run_migrate(args: argparse.Namespace, settings: MigrationSettings) -> int:
    customers: tuple[str, ...] = ()
    if args.customers_file:
        customers = tuple(load_customers_file(Path(args.customers_file)))
        logger.info("Customers file: %s (%d customers)", args.customers_file, len(customers))

    target = RunTarget(
        customers=customers,
        customer=args.customer,
        space=args.space,
        cid=args.cid,
        limit=args.limit,
    )
    config = settings.to_migration_config()
    collaborators = await build_collaborators(settings)

    async with open_progress_store(
        settings.database_url, enable_tracing=settings.enable_tracing
    ) as store:
        orchestrator = MigrationOrchestrator(
            collaborators,
            store.spaces,
            store.customers,
            config,
            enable_tracing=settings.enable_tracing,
        )
        summary = await orchestrator.run(
            target, verify_only=args.verify_only, single_step=_single_step(args)
        )

    print(format_summary(summary))
    if summary.outcomes and not args.no_results:
        path = orchestrator.save_results(summary, target)
        print(f"\nResults saved to: {path}")
    return 1 if summary.failed else 0


async def run_plan(args: argparse.Namespace, settings: MigrationSettings) -> int:
    config = PlannerConfig(
        segments=args.segments,
        min_uploads=args.min_uploads,
        include=parse_include_filter(args.include),
        state_dir=settings.state_dir,
    )
    collaborators = await build_collaborators(settings)

    async with open_progress_store(
        settings.database_url, enable_tracing=settings.enable_tracing
    ) as store:
        planner = PartitionPlanner(
            collaborators.ownership,
            collaborators.uploads,
            store.customers,
            config,
            environment=settings.environment,
            enable_tracing=settings.enable_tracing,
        )
        plan = await planner.plan(args.instances)

        print(format_analysis(plan.analysis))
        print()
        if args.analyze:
            return 0

        print(format_distribution(plan.instances, args.workers, config.uploads_per_min_per_worker))
        print()
        print(format_estimates(estimate_migration_time(plan.instances)))
        print()
        paths = await planner.save(plan)

    for path in paths:
        print(f"Wrote {path}")
    return 0


async def run_monitor(args: argparse.Namespace, settings: MigrationSettings) -> int:
    async with open_progress_store(
        settings.database_url,
        initialize=False,
        enable_tracing=settings.enable_tracing,
    ) as store:
        monitor = MigrationMonitor(store.spaces, store.customers)
        while True:
            if args.customer and args.space:
                output = format_space(await monitor.space_detail(args.customer, args.space))
            elif args.customer:
                output = format_customer(await monitor.customer_detail(args.customer))
            elif args.instance:
                output = format_instance(await monitor.instance_detail(args.instance))
            elif args.failed:
                output = format_failed(await monitor.failed())
            elif args.stuck:
                staleness = timedelta(minutes=args.stuck_minutes)
                output = format_stuck(await monitor.stuck(staleness), staleness)
            else:
                output = format_overall(await monitor.overall_stats())
            print(output)

            if not args.watch:
                return 0
            print(f"\nRefreshing in {args.watch_interval} seconds...")
            await asyncio.sleep(args.watch_interval)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legacy-migrate",
        description="Migrate legacy uploads to the indexing and claims services",
    )
    parser.add_argument("--collaborators", help="Collaborators factory as module:function")
    parser.add_argument(
        "--database-url",
        help="Progress store URL (memory://, sqlite+aiosqlite:///..., postgresql+asyncpg://...)",
    )
    parser.add_argument("--environment", choices=["production", "staging"])
    parser.add_argument("--log-level", help="Logging level (default INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate = subparsers.add_parser("migrate", help="Migrate or verify uploads")
    migrate.add_argument(
        "--customers-file", help="JSON array of customers, or an instance assignment file"
    )
    migrate.add_argument("--customer", help="Migrate one customer")
    migrate.add_argument("--space", help="Migrate one space")
    migrate.add_argument("--cid", help="Migrate one upload root (requires --space)")
    migrate.add_argument(
        "--limit",
        type=int,
        help="Maximum uploads (default: 10 without a filter, unlimited with one)",
    )
    migrate.add_argument("--verify-only", action="store_true", help="Verify without making changes")
    migrate.add_argument(
        "--single-step",
        choices=[mode.value for mode in SingleStepMode],
        help="Run only one migration step",
    )
    migrate.add_argument("--instance-id", help="Instance recorded in progress rows")
    migrate.add_argument("--worker-id", help="Worker recorded in progress rows")
    migrate.add_argument("--no-results", action="store_true", help="Do not write a results file")

    plan = subparsers.add_parser("plan", help="Distribute customers across instances")
    plan.add_argument("--instances", type=int, required=True, help="Number of instances")
    plan.add_argument("--segments", type=int, default=4, help="Parallel scan segments (1-10)")
    plan.add_argument(
        "--min-uploads", type=int, default=0, help="Minimum uploads to include a customer"
    )
    plan.add_argument("--include", help="Comma-separated customer filter")
    plan.add_argument(
        "--workers", type=int, default=10, help="Workers per instance for time estimates"
    )
    plan.add_argument("--analyze", action="store_true", help="Print the analysis without saving")

    monitor = subparsers.add_parser("monitor", help="Show migration progress")
    monitor.add_argument("--customer", help="Customer detail")
    monitor.add_argument("--space", help="Space detail (requires --customer)")
    monitor.add_argument("--instance", help="Instance detail")
    monitor.add_argument("--failed", action="store_true", help="Failed customers and spaces")
    monitor.add_argument(
        "--stuck", action="store_true", help="In-progress spaces not updated recently"
    )
    monitor.add_argument("--stuck-minutes", type=int, default=60)
    monitor.add_argument("--watch", action="store_true", help="Refresh until interrupted")
    monitor.add_argument("--watch-interval", type=int, default=30)
    return parser


def load_settings(args: argparse.Namespace) -> MigrationSettings:
    overrides: dict[str, Any] = {}
    for option, setting in (
        ("collaborators", "collaborators"),
        ("database_url", "database_url"),
        ("environment", "environment"),
        ("log_level", "log_level"),
        ("instance_id", "instance_id"),
        ("worker_id", "worker_id"),
    ):
        value = getattr(args, option, None)
        if value is not None:
            overrides[setting] = value
    return MigrationSettings(**overrides)


_COMMANDS = {
    "migrate": run_migrate,
    "plan": run_plan,
    "monitor": run_monitor,
}


def main(argv: list[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    settings = load_settings(args)
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)

    try:
        return asyncio.run(_COMMANDS[args.command](args, settings))
    except KeyboardInterrupt:
        return 130
    except (LegacyMigrationError, ValueError, OSError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
