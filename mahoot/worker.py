"""
Ingestion Worker — Kafka consumer.

Consumes decoded firehose records from the follow and post topics:

  follow.created  {"follower_id", "followee_id", "uri"}
  follow.deleted  {"uri"}
  post.created    {"uri", "cid", "author_id", "indexed_at"?}
  post.deleted    {"uri"}

Each record is applied in its own session and committed on its own, so a bad
record is logged and skipped without affecting its neighbours.

Alongside the consumer a background task purges old daily statistics and
the old view records of posts that have left the catalog.
"""
import asyncio
import json
import logging
from collections import Counter
from contextlib import suppress
from datetime import datetime, timezone
from typing import Optional

from aiokafka import AIOKafkaConsumer
from opentelemetry import trace

from mahoot.catalog import PostCatalog
from mahoot.config import settings
from mahoot.database import AsyncSessionLocal, init_db
from mahoot.ingestion import (
    on_follow_created,
    on_follow_removed,
    on_post_created,
    on_post_deleted,
)
from mahoot.stats import StatsAggregator
from mahoot.telemetry import INGESTION_EVENTS_TOTAL, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)


class MalformedRecord(ValueError):
    pass


def _required(msg: dict, *fields: str) -> list[str]:
    values = [msg.get(f) for f in fields]
    missing = [f for f, v in zip(fields, values) if not v]
    if missing:
        raise MalformedRecord(f"missing {', '.join(missing)}")
    return values


def _parse_timestamp(value) -> Optional[datetime]:
    """ISO-8601 string → naive UTC datetime; None when absent."""
    if not value:
        return None
    ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return ts


# ─────────────────────────── Message Handler ─────────────────────────────

async def process_message(msg: dict, session) -> str:
    """Apply one record to the core. Returns its type."""
    record_type = msg.get("type")

    with tracer.start_as_current_span("ingest") as span:
        span.set_attribute("ingest.type", str(record_type))

        if record_type == "follow.created":
            follower, followee, uri = _required(msg, "follower_id", "followee_id", "uri")
            await on_follow_created(session, follower, followee, uri)
        elif record_type == "follow.deleted":
            (uri,) = _required(msg, "uri")
            await on_follow_removed(session, uri)
        elif record_type == "post.created":
            uri, cid, author = _required(msg, "uri", "cid", "author_id")
            await on_post_created(
                session, uri, cid, author, _parse_timestamp(msg.get("indexed_at"))
            )
        elif record_type == "post.deleted":
            (uri,) = _required(msg, "uri")
            await on_post_deleted(session, uri)
        else:
            raise MalformedRecord(f"unknown record type {record_type!r}")

    return record_type


class IngestionWorker:
    """Consumer loop state: the session factory and running counters."""

    def __init__(self, session_factory=AsyncSessionLocal, log_every: Optional[int] = None):
        self.session_factory = session_factory
        self.log_every = log_every or settings.ingestion_log_every
        self.counts: Counter = Counter()
        self.processed = 0

    async def handle(self, msg: dict) -> bool:
        """Process one record in its own transaction. Returns False if skipped."""
        try:
            async with self.session_factory() as session:
                try:
                    record_type = await process_message(msg, session)
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise
        except MalformedRecord as exc:
            logger.warning("Malformed ingestion record %s: %s", msg, exc)
            INGESTION_EVENTS_TOTAL.labels(type="malformed").inc()
            return False
        except Exception as exc:
            logger.error("Ingestion error for %s: %s", msg, exc)
            INGESTION_EVENTS_TOTAL.labels(type="error").inc()
            return False

        INGESTION_EVENTS_TOTAL.labels(type=record_type).inc()
        self.counts[record_type] += 1
        self.processed += 1
        if self.processed % self.log_every == 0:
            await self.log_counters()
        return True

    async def log_counters(self) -> None:
        async with self.session_factory() as session:
            total_posts = await PostCatalog(session).count()
        logger.info(
            "Ingestion progress: %d records (%s), %d posts in catalog",
            self.processed,
            ", ".join(f"{k}={v}" for k, v in sorted(self.counts.items())),
            total_posts,
        )


# ─────────────────────────── Retention ───────────────────────────────────

async def cleanup_once(session_factory=AsyncSessionLocal) -> tuple[int, int]:
    async with session_factory() as session:
        removed = await StatsAggregator(session).cleanup()
        await session.commit()
    return removed


async def cleanup_loop(session_factory=AsyncSessionLocal) -> None:
    while True:
        try:
            await cleanup_once(session_factory)
        except Exception as exc:
            logger.error("Statistics cleanup failed: %s", exc)
        await asyncio.sleep(settings.stats_cleanup_interval_seconds)


async def cancel_and_wait(task: asyncio.Task) -> None:
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


# ─────────────────────────── Main Loop ───────────────────────────────────

async def main() -> None:
    setup_tracing(f"{settings.service_name}-ingestion")
    await init_db()

    worker = IngestionWorker()
    cleanup_task = asyncio.create_task(cleanup_loop())

    consumer = AIOKafkaConsumer(
        settings.kafka_topic_follows,
        settings.kafka_topic_posts,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=settings.kafka_consumer_group,
        auto_offset_reset="earliest",
        value_deserializer=lambda v: json.loads(v.decode("utf-8")),
    )
    await consumer.start()
    logger.info(
        "Ingestion worker listening on topics '%s', '%s'",
        settings.kafka_topic_follows, settings.kafka_topic_posts,
    )

    try:
        async for msg in consumer:
            await worker.handle(msg.value)
    finally:
        await cancel_and_wait(cleanup_task)
        await consumer.stop()
        await worker.log_counters()


if __name__ == "__main__":
    asyncio.run(main())
