from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from shopify_extractor.core.credentials import persist_credentials
from shopify_extractor.core.csv_export import records_to_csv
from shopify_extractor.core.dependent import DependentQueryExecutor
from shopify_extractor.core.errors import ExtractorError
from shopify_extractor.core.graphql_client import ShopifyGraphQLClient
from shopify_extractor.core.models import DEFAULT_API_VERSION, Credentials, settings
from shopify_extractor.core.pagination import PaginatedFetcher
from shopify_extractor.core.queries import PREDEFINED_QUERIES, get_query_template, list_templates

logger = logging.getLogger("shopify_extractor")

RESOURCES = ["products", "orders", "customers"]


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _credentials_or_exit() -> Credentials:
    credentials = Credentials.from_settings(settings)
    if not credentials.is_complete:
        print(
            "Missing credentials: set SHOPIFY_STORE_NAME and SHOPIFY_ACCESS_TOKEN "
            "or run 'shopify-extractor setup'.",
            file=sys.stderr,
        )
        sys.exit(1)
    return credentials


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


async def extract_resources(
    credentials: Credentials, resources: List[str], limit: int, data_dir: Path
) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    async with ShopifyGraphQLClient(credentials) as client:
        for resource in resources:
            logger.info("--- EXTRACTING %s ---", resource.upper())
            fetcher = PaginatedFetcher(client, page_dir=data_dir)
            items = await fetcher.fetch_all(
                PREDEFINED_QUERIES[resource].query, {"first": limit}, resource_key=resource, label=resource
            )
            _write_json(data_dir / f"{resource}_all.json", items)
            counts[resource] = len(items)
    return counts


def cmd_extract(args: argparse.Namespace) -> int:
    credentials = _credentials_or_exit()
    resources = RESOURCES if args.resource == "all" else [args.resource]
    started = dt.datetime.now(dt.timezone.utc)
    logger.info("Starting extraction for %s at %s", "all data types" if args.resource == "all" else args.resource, started.isoformat())
    try:
        counts = asyncio.run(extract_resources(credentials, resources, args.limit, args.data_dir))
    except ExtractorError as exc:
        logger.error("Error during data extraction: %s", exc)
        return 1

    finished = dt.datetime.now(dt.timezone.utc)
    elapsed = (finished - started).total_seconds()
    duration = f"{int(elapsed // 60)} minutes, {elapsed % 60:.2f} seconds"
    if args.resource == "all":
        _write_json(
            args.data_dir / "extraction_summary.json",
            {"extractionDate": finished.isoformat(), "duration": duration, "counts": counts},
        )
    logger.info("--- EXTRACTION COMPLETED --- Duration: %s", duration)
    for resource, count in counts.items():
        logger.info("- %s: %d", resource, count)
    logger.info("Results saved to %s", args.data_dir)
    return 0


async def extract_dependent(credentials: Credentials, template_name: str, batch_size: Optional[int]) -> Any:
    template = get_query_template(template_name)
    async with ShopifyGraphQLClient(credentials) as client:
        executor = DependentQueryExecutor(client)
        return await executor.execute_template(template, batch_size=batch_size)


def cmd_dependent(args: argparse.Namespace) -> int:
    credentials = _credentials_or_exit()
    try:
        results = asyncio.run(extract_dependent(credentials, args.template, args.batch_size))
    except ExtractorError as exc:
        logger.error("Dependent extraction failed: %s", exc)
        return 1

    stem = f"{args.template}_{dt.date.today().isoformat()}"
    if args.format == "csv":
        path = args.data_dir / f"{stem}.csv"
        path.parent.mkdir(parents=True, exist_ok=True)
        rows = results if isinstance(results, list) else [results]
        path.write_text(records_to_csv(rows), encoding="utf-8")
    else:
        path = args.data_dir / f"{stem}.json"
        _write_json(path, results)
    logger.info("Results saved to file: %s", path)
    return 0


def cmd_templates(args: argparse.Namespace) -> int:
    for info in list_templates():
        print(f"{info.name:<28} {info.label}")
        print(f"{'':<28} {info.description}")
    return 0


def cmd_setup(args: argparse.Namespace) -> int:
    env_file: Path = args.env_file
    print("Shopify Data Extractor - Setup")
    print("-------------------------------")
    if env_file.exists():
        print(f"Warning: {env_file} already exists.")
        if input("Do you want to overwrite it? (y/n): ").strip().lower() != "y":
            print("Setup cancelled. Existing .env file preserved.")
            return 0
        env_file.unlink()

    print("\nPlease enter your Shopify API credentials:")
    credentials = Credentials(
        clientId=input("Client ID: ").strip(),
        accessToken=input("Access Token: ").strip(),
        storeName=input("Store Name (without .myshopify.com): ").strip(),
        apiVersion=input(f"API Version [{DEFAULT_API_VERSION}]: ").strip() or DEFAULT_API_VERSION,
    )
    path = persist_credentials(credentials, env_file)
    print(f"\nCredentials saved to: {path}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("shopify_extractor.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shopify-extractor", description="Extract Shopify Admin GraphQL data")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    extract = sub.add_parser("extract", help="Extract a predefined resource with pagination")
    extract.add_argument("resource", choices=RESOURCES + ["all"])
    extract.add_argument("--limit", type=positive_int, default=50, help="Page size (records per request)")
    extract.add_argument("--data-dir", type=Path, default=settings.DATA_DIR)
    extract.set_defaults(func=cmd_extract)

    dependent = sub.add_parser("dependent", help="Run a dependent query template")
    dependent.add_argument("template")
    dependent.add_argument("--batch-size", type=positive_int, default=None)
    dependent.add_argument("--format", choices=["json", "csv"], default="json")
    dependent.add_argument("--data-dir", type=Path, default=settings.DATA_DIR)
    dependent.set_defaults(func=cmd_dependent)

    templates = sub.add_parser("templates", help="List dependent query templates")
    templates.set_defaults(func=cmd_templates)

    setup = sub.add_parser("setup", help="Write Shopify credentials to a .env file")
    setup.add_argument("--env-file", type=Path, default=settings.ENV_FILE)
    setup.set_defaults(func=cmd_setup)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=settings.HOST)
    serve.add_argument("--port", type=int, default=settings.PORT)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
