"""
Command-line interface for SentimentAI.

Provides commands for:
- Serving the HTTP API
- Provisioning API keys
- Inspecting quota usage
- Checking the inference server
"""

import argparse
import json
import sys

from sentimentai.config import get_settings, set_settings
from sentimentai.errors import SentimentError
from sentimentai.inference import InferenceClient
from sentimentai.metrics import configure_logging
from sentimentai.quota import QuotaManager
from sentimentai.storage import SQLiteStorage


def _quotas(args) -> QuotaManager:
    settings = get_settings()
    return QuotaManager(SQLiteStorage(db_path=args.db or settings.db_path), settings=settings)


def cmd_serve(args):
    """Run the API with uvicorn."""
    import uvicorn

    if args.db:
        set_settings(db_path=args.db)
    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)


def cmd_create_key(args):
    """Provision a quota record and API key for a user."""
    quota = _quotas(args).provision(args.user_id, max_requests=args.max_requests)
    print("\n" + "=" * 60)
    print("API KEY")
    print("=" * 60)
    print(f"User:         {quota.user_id}")
    print(f"Secret key:   {quota.secret_key}")
    print(f"Max requests: {quota.max_requests} per {get_settings().quota_reset_days} days")
    print("=" * 60)


def cmd_usage(args):
    """Show a user's monthly usage."""
    try:
        usage = _quotas(args).usage(args.user_id)
    except SentimentError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(usage, indent=2))
        return

    print(f"\n{usage['requests_used']} of {usage['max_requests']} requests "
          f"({usage['percent_used']}%)")
    print(f"Remaining:  {usage['remaining']}")
    print(f"Next reset: {usage['next_reset_date']}")


def cmd_health(args):
    """Check the inference server."""
    client = InferenceClient(base_url=args.url)
    try:
        payload = client.health()
    except SentimentError as exc:
        print(f"UNHEALTHY: {exc.message}")
        sys.exit(1)
    print(f"HEALTHY: {client.base_url}")
    print(json.dumps(payload, indent=2))


def main():
    """Main CLI entry point."""
    configure_logging()

    parser = argparse.ArgumentParser(
        prog="sentimentai",
        description="SentimentAI - emotion and sentiment analysis for videos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the API
  sentimentai serve --port 3000

  # Create an API key with 100 requests per month
  sentimentai create-key user_123 --max-requests 100

  # Check usage
  sentimentai usage user_123

  # Is the model server up?
  sentimentai health --url http://127.0.0.1:8000
""",
    )
    parser.add_argument("--db", help="Path to the SQLite database")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", "-p", type=int, default=3000)
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    key_parser = subparsers.add_parser("create-key", help="Provision an API key")
    key_parser.add_argument("user_id", help="User to provision")
    key_parser.add_argument("--max-requests", "-m", type=int,
                            help="Requests allowed per window (default from settings)")

    usage_parser = subparsers.add_parser("usage", help="Show quota usage")
    usage_parser.add_argument("user_id")
    usage_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    health_parser = subparsers.add_parser("health", help="Check the inference server")
    health_parser.add_argument("--url", help="Inference server base URL")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "serve": cmd_serve,
        "create-key": cmd_create_key,
        "usage": cmd_usage,
        "health": cmd_health,
    }

    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
