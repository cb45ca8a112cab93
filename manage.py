#!/usr/bin/env python3
"""
Judicial Analytics Management CLI
Generate, inspect and maintain cached judge analytics.
"""
import argparse
import json
import logging
import sys
import threading
from pathlib import Path

from dotenv import load_dotenv


def _config(args):
    from judicial_analytics.config import AnalyticsConfig

    if args.config:
        config = AnalyticsConfig.load(Path(args.config))
    else:
        config = AnalyticsConfig.from_env()
    if args.db:
        config.db_path = Path(args.db)
    return config


def _service(args):
    from judicial_analytics.pipeline import build_service
    return build_service(_config(args))


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def cmd_init_db(args):
    """Create database tables."""
    from judicial_analytics.models.db import init_db

    config = _config(args)
    init_db(config.db_path)
    print(f"Initialized database at {config.db_path}")


def cmd_import(args):
    """Import judges and cases from a JSON file."""
    from judicial_analytics.models.db import init_db, insert_cases, upsert_judge

    config = _config(args)
    init_db(config.db_path)
    with open(args.file) as f:
        data = json.load(f)

    judges = data.get("judges", [])
    for judge in judges:
        upsert_judge(judge, db_path=config.db_path)
    count = insert_cases(data.get("cases", []), db_path=config.db_path)
    print(f"Imported {len(judges)} judges and {count} cases")


def cmd_show(args):
    """Show analytics for one judge."""
    service = _service(args)
    try:
        lookup = service.get_or_generate(args.judge_id, generate=not args.cached_only)
    finally:
        service.close()

    if args.json:
        _print_json(lookup.to_dict())
        return 0 if lookup.result else 1

    print("=" * 50)
    print(f"JUDGE {args.judge_id}: {lookup.state.value.upper()}")
    print("=" * 50)
    if lookup.error:
        print(f"  Error: {lookup.error}")
    result = lookup.result
    if result is None:
        return 1

    print(f"  Source:        {lookup.source}{' (stale)' if lookup.stale else ''}")
    print(f"  Generated:     {result.generated_at.isoformat()}")
    print(f"  Decided cases: {result.total_decided} ({result.total_recent} recent)")
    print(f"  Confidence:    {result.overall_confidence}")
    if result.withheld:
        print(f"  Withheld:      {result.withheld_reason}")
    for category in result.categories.values():
        line = f"  {category.category.value:<9} n={category.sample_size:<5} {category.status.value:<9}"
        if category.metrics and category.metrics.settlement_rate is not None:
            line += f" settle={category.metrics.settlement_rate:.1%}"
        line += f" conf={category.confidence} tier={category.quality_tier.value}"
        print(line)
    if result.narrative:
        print(f"\n{result.narrative.text}\n\n{result.narrative.disclaimer}")
    elif result.narrative_unavailable:
        print(f"\n  Narrative unavailable: {'; '.join(result.narrative_errors)}")
    return 0


def cmd_regenerate(args):
    """Regenerate analytics for one judge."""
    service = _service(args)
    try:
        outcome = service.regenerate(args.judge_id, force=not args.no_force)
    finally:
        service.close()
    _print_json(outcome.to_dict())
    return 1 if outcome.status == "failed" else 0


def cmd_regenerate_all(args):
    """Regenerate analytics for every judge."""
    service = _service(args)
    holder = {}

    def run():
        holder["report"] = service.regenerate_population(
            limit=args.limit,
            concurrency=args.concurrency,
            force=args.force,
            dry_run=args.dry_run,
        )

    worker = threading.Thread(target=run, name="regenerate-all")
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.5)
    except KeyboardInterrupt:
        print("\nCancelling: waiting for in-flight judges to finish...")
        service.cancel_batch()
        worker.join()
    finally:
        service.close()

    report = holder.get("report")
    if report is None:
        return 1

    print("=" * 50)
    print("REGENERATION" + (" (DRY RUN)" if report.dry_run else ""))
    print("=" * 50)
    print(f"  Judges:     {report.total}")
    print(f"  Generated:  {report.succeeded}")
    print(f"  Withheld:   {report.withheld}")
    print(f"  Cached:     {report.from_cache}")
    print(f"  Failed:     {report.failed}")
    print(f"  Cancelled:  {report.cancelled}")
    print(f"  Elapsed:    {report.elapsed:.1f}s")
    for failure in report.failures[:20]:
        print(f"    {failure['judge_id']}: {failure['error']}")
    return 1 if report.failed else 0


def cmd_stale(args):
    """List cache entries past the freshness window."""
    service = _service(args)
    try:
        entries = service.list_stale(args.limit)
    finally:
        service.close()
    for entry in entries:
        print(f"  {entry['judge_id']:<30} updated {entry['updated_at']}")
    print(f"{len(entries)} stale entries")


def cmd_clear_stale(args):
    """Delete cache entries older than the freshness window (or --hours)."""
    service = _service(args)
    try:
        removed = service.clear_stale(args.hours)
    finally:
        service.close()
    print(f"Removed {removed} stale entries")


def cmd_usage(args):
    """Show AI narrative usage for today."""
    service = _service(args)
    try:
        _print_json(service.usage())
    finally:
        service.close()


def cmd_serve(args):
    """Start the API server."""
    import uvicorn
    uvicorn.run("judicial_analytics.main:app", host=args.host, port=args.port, reload=args.reload)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Judicial Analytics Management CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manage.py init-db
  python manage.py import --file cases.json
  python manage.py show judge-123
  python manage.py regenerate-all --limit 100 --concurrency 8 --dry-run
  python manage.py clear-stale --hours 4320
  python manage.py serve --port 8000
        """
    )
    parser.add_argument('--config', help='JSON configuration file (default: environment)')
    parser.add_argument('--db', help='Database path override')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init-db', help='Create database tables')
    init_parser.set_defaults(func=cmd_init_db)

    import_parser = subparsers.add_parser('import', help='Import judges and cases from JSON')
    import_parser.add_argument('--file', required=True, help='JSON file with "judges" and "cases" lists')
    import_parser.set_defaults(func=cmd_import)

    show_parser = subparsers.add_parser('show', help='Show analytics for a judge')
    show_parser.add_argument('judge_id')
    show_parser.add_argument('--cached-only', action='store_true', help='Do not generate on a cache miss')
    show_parser.add_argument('--json', action='store_true', help='Print the raw result')
    show_parser.set_defaults(func=cmd_show)

    regen_parser = subparsers.add_parser('regenerate', help='Regenerate analytics for a judge')
    regen_parser.add_argument('judge_id')
    regen_parser.add_argument('--no-force', action='store_true', help='Skip if a fresh entry is cached')
    regen_parser.set_defaults(func=cmd_regenerate)

    all_parser = subparsers.add_parser('regenerate-all', help='Regenerate analytics for all judges')
    all_parser.add_argument('--limit', type=int, help='Maximum judges to process')
    all_parser.add_argument('--concurrency', type=int, help='Parallel workers')
    all_parser.add_argument('--force', action='store_true', help='Regenerate even fresh entries')
    all_parser.add_argument('--dry-run', action='store_true', help='List work without generating')
    all_parser.set_defaults(func=cmd_regenerate_all)

    stale_parser = subparsers.add_parser('stale', help='List stale cache entries')
    stale_parser.add_argument('--limit', type=int, default=100)
    stale_parser.set_defaults(func=cmd_stale)

    clear_parser = subparsers.add_parser('clear-stale', help='Delete stale cache entries')
    clear_parser.add_argument('--hours', type=int, help='Age threshold (default: freshness window)')
    clear_parser.set_defaults(func=cmd_clear_stale)

    usage_parser = subparsers.add_parser('usage', help='Show AI usage and budget')
    usage_parser.set_defaults(func=cmd_usage)

    serve_parser = subparsers.add_parser('serve', help='Start API server')
    serve_parser.add_argument('--host', default='0.0.0.0', help='Host to bind')
    serve_parser.add_argument('--port', type=int, default=8000, help='Port to bind')
    serve_parser.add_argument('--reload', action='store_true', help='Auto-reload on changes')
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args) or 0


if __name__ == "__main__":
    sys.exit(main())
