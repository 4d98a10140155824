"""
Command line entry point for Daily Discovery.

Runs one discovery request and prints the result envelope as JSON.
"""

import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from daily_discovery.config.settings import ConfigurationError, DiscoverySettings
from daily_discovery.pipeline.discovery_aggregator import AGGREGATED_ID, DiscoveryAggregator
from daily_discovery.pipeline.discovery_request import DiscoveryRequest, handle_discovery_request
from daily_discovery.utils.logging_config import setup_logging


def build_parser():
    import argparse
    parser = argparse.ArgumentParser(description="Daily Discovery: multi-source content aggregation")
    parser.add_argument('--category', help='Category id (built-in id, "all", or a new name for an ad-hoc category)')
    parser.add_argument('--name', help='Display name for the category')
    parser.add_argument('--prompt', help='Focus prompt for curation')
    parser.add_argument('--limit', help='Number of items to return (clamped to 3-16, default 6)')
    parser.add_argument('--all', action='store_true', help='Merge results across categories')
    parser.add_argument('--categories', help='JSON array of {id, name, prompt} objects used with --all')
    parser.add_argument('--sites', help='Comma-separated related sites for an ad-hoc category')
    parser.add_argument('--list-categories', action='store_true', help='Print the built-in categories and exit')
    parser.add_argument('--log-level', help='Log level (defaults to DISCOVERY_LOG_LEVEL or INFO)')
    parser.add_argument('--structured-logs', action='store_true', help='Emit JSON log lines')
    parser.add_argument('--log-dir', help='Also write rotating log files to this directory')
    return parser


async def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        settings = DiscoverySettings.from_environment(load_env_file=False).validate()
    except ConfigurationError as e:
        print(f"❌ Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_dir=args.log_dir,
        structured=args.structured_logs,
    )

    async with DiscoveryAggregator.from_settings(settings) as aggregator:
        if args.list_categories:
            print(json.dumps(aggregator.get_default_categories_snapshot(), indent=2, ensure_ascii=False))
            return 0

        request = DiscoveryRequest(
            category_id=AGGREGATED_ID if args.all else args.category,
            category_name=args.name,
            prompt=args.prompt,
            limit=args.limit,
            categories=args.categories,
            sites=args.sites,
        )
        response = await handle_discovery_request(aggregator, request)

    print(json.dumps(response.body, indent=2, ensure_ascii=False))
    return 0 if response.status_code == 200 else 1


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\n⚠️ Interrupted", file=sys.stderr)
        logging.getLogger(__name__).info("Interrupted by user")
        sys.exit(130)


if __name__ == "__main__":
    cli()
