"""
Move messages from one physical queue to another.

Why:
- Lets operators redrive a dead-letter queue back into its work queue once
  the failure that sent messages there is fixed.

How:
- Receives from the source in batches, sends each body and its attributes
  verbatim to the destination, then deletes it from the source. Compressed
  messages stay compressed; correlation ids and error details are kept.

Usage examples:
- Move up to 5 messages from the dead-letter queue back to the work queue:
  python -m scripts.move_messages --source dead_letter_queue --destination basic_queue --max 5

- Drain everything on a local ElasticMQ:
  QUEUE_ENDPOINT=http://localhost:9324 QUEUE_ACCOUNT_ID=queue QUEUE_REGION=us-east-1 \
    python -m scripts.move_messages --source dead_letter_queue --destination basic_queue

- Preview the queue URLs that would be used:
  python -m scripts.move_messages --source dead --destination work --dry-run
"""

import argparse
import asyncio
from typing import Optional

from logical_queues.client import QueueClient
from logical_queues.config import ClientConfig, Settings, resolve_queue_url
from logical_queues.context import QueueContext
from logical_queues.logging_utils import get_logger, setup_logging
from logical_queues.metrics import start_metrics_server
from logical_queues.tracing import start_tracing


async def move(
    source: str,
    destination: str,
    max_messages: Optional[int],
    *,
    endpoint: Optional[str],
    region: Optional[str],
    account_id: Optional[str],
    wait_time_seconds: int,
    dry_run: bool,
) -> int:
    """Move messages between two physical queues and return the count moved.

    Connection details fall back to the QUEUE_* environment variables read
    by ``Settings``.

    Examples:
    - Dry run:
      await move("dead", "work", 10, endpoint=None, region="us-east-1", account_id=None, wait_time_seconds=1, dry_run=True)
    """
    settings = Settings()
    context = QueueContext(logger=get_logger("scripts.move_messages"))
    config = ClientConfig(
        endpoint=endpoint or settings.queue_endpoint or None,
        region=region or settings.queue_region or None,
        account_id=account_id or settings.queue_account_id or None,
        disable_subscriptions=True,
    )
    client = QueueClient(context, config, settings=settings)
    try:
        if dry_run:
            default = client.endpoints[None]
            print(f"Dry-run: would move up to {max_messages or 'all'} messages")
            print(f"  from {resolve_queue_url(source, default)}")
            print(f"  to   {resolve_queue_url(destination, default)}")
            return 0
        moved = await client.move_messages(
            context, source, destination, max_messages, wait_time_seconds=wait_time_seconds
        )
    finally:
        await client.close()
    print(f"Moved {moved} messages from {source} to {destination}")
    return moved


def main() -> None:
    """CLI entrypoint for moving messages between queues.

    See module docstring for examples.
    """
    settings = Settings()
    parser = argparse.ArgumentParser(description="Move messages between physical queues")
    parser.add_argument("--source", required=True, help="Source queue name or URL")
    parser.add_argument("--destination", required=True, help="Destination queue name or URL")
    parser.add_argument("--max", dest="max_messages", type=int, default=None, help="Stop after this many messages")
    parser.add_argument("--endpoint", help="Broker base URL (defaults to QUEUE_ENDPOINT)")
    parser.add_argument("--region", help="Broker region (defaults to QUEUE_REGION)")
    parser.add_argument("--account-id", help="Account path segment (defaults to QUEUE_ACCOUNT_ID)")
    parser.add_argument("--wait", dest="wait_time_seconds", type=int, default=1, help="Long-poll seconds per receive")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--log-level", default=settings.log_level)
    parser.add_argument("--metrics", action="store_true", help="Expose /metrics on METRICS_PORT while moving")
    parser.add_argument("--trace", action="store_true", help="Print spans to the console")
    args = parser.parse_args()

    setup_logging(level=args.log_level)
    if args.metrics:
        start_metrics_server(settings.metrics_port)
    if args.trace:
        start_tracing("queue-mover")
    asyncio.run(
        move(
            args.source,
            args.destination,
            args.max_messages,
            endpoint=args.endpoint,
            region=args.region,
            account_id=args.account_id,
            wait_time_seconds=args.wait_time_seconds,
            dry_run=args.dry_run,
        )
    )


if __name__ == "__main__":
    main()
