# ABOUTME: Link-keyed dedup gate between freshly normalized items and stored ones.
# ABOUTME: Partitions candidates and inserts only new rows, deferring to the (feed_id, link) constraint.

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from feed_tune.db.models import FeedItem
from feed_tune.models import NormalizedItem

log = structlog.get_logger()


@dataclass
class DedupResult:
    new: list[NormalizedItem] = field(default_factory=list)
    duplicate: list[NormalizedItem] = field(default_factory=list)


def partition(existing_links: Iterable[str], candidates: Iterable[NormalizedItem]) -> DedupResult:
    """Split candidates into new and duplicate by exact link equality.

    Links are compared verbatim: trailing slashes and query strings are not
    normalized. A link repeated within the batch counts once.
    """
    seen = set(existing_links)
    result = DedupResult()
    for item in candidates:
        if item.link in seen:
            result.duplicate.append(item)
        else:
            seen.add(item.link)
            result.new.append(item)
    return result


async def stored_links(session: AsyncSession, feed_id: int) -> set[str]:
    result = await session.execute(select(FeedItem.link).where(FeedItem.feed_id == feed_id))
    return set(result.scalars().all())


def to_row(feed_id: int, item: NormalizedItem) -> FeedItem:
    return FeedItem(
        feed_id=feed_id,
        item_type=item.source_type.value,
        title=item.title,
        link=item.link,
        description=item.description,
        content=item.content,
        author=item.author,
        guid=item.guid,
        video_id=item.video_id,
        thumbnail=item.thumbnail,
        published_at=item.published_at,
        published_inferred=item.published_inferred,
    )


async def insert_new_items(
    session: AsyncSession, feed_id: int, candidates: list[NormalizedItem]
) -> int:
    """Store the candidates not yet present for this feed. Returns the number inserted.

    The pre-check is a fast path only; a row rejected by the storage uniqueness
    constraint (a concurrent pass got there first) is treated as a duplicate.
    """
    linked = [item for item in candidates if item.link]
    if len(linked) < len(candidates):
        log.warning("items_without_link_dropped", feed_id=feed_id, count=len(candidates) - len(linked))

    result = partition(await stored_links(session, feed_id), linked)
    inserted = 0
    for item in result.new:
        try:
            async with session.begin_nested():
                session.add(to_row(feed_id, item))
            inserted += 1
        except IntegrityError:
            log.info("item_already_stored", feed_id=feed_id, link=item.link)

    log.info(
        "items_deduplicated",
        feed_id=feed_id,
        new=inserted,
        duplicate=len(result.duplicate) + len(result.new) - inserted,
    )
    return inserted
