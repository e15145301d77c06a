# ABOUTME: Per-user item flags (read, favorite, read later) and item listings carrying them.
# ABOUTME: One interaction row per (user, item), created on first toggle and updated in place.

from datetime import UTC, datetime

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feed_tune.db.models import Feed, FeedItem, Interaction
from feed_tune.db.session import storage_errors
from feed_tune.errors import InvalidInput, NotFound, Unauthorized
from feed_tune.models import FeedSummary, FeedType, InteractionFlag, ItemView

log = structlog.get_logger()


def require_user(user_id: str | None) -> str:
    if not user_id:
        raise Unauthorized("Authentication required")
    return user_id


async def _owned_item(session: AsyncSession, user_id: str, item_id: int) -> FeedItem:
    result = await session.execute(
        select(FeedItem)
        .join(Feed, Feed.id == FeedItem.feed_id)
        .where(FeedItem.id == item_id, Feed.user_id == user_id)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFound(f"Item not found: {item_id}")
    return item


def _apply_flag(interaction: Interaction, flag: InteractionFlag, value: bool) -> None:
    setattr(interaction, flag.value, value)
    if flag == InteractionFlag.READ:
        interaction.read_at = datetime.now(UTC) if value else None


async def set_interaction(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str | None,
    item_id: int,
    flag: InteractionFlag | str,
    value: bool,
) -> dict[str, bool]:
    """Set one flag for (user, item) and return the row's flags.

    Flags are independent; setting one never touches the others.
    """
    user_id = require_user(user_id)
    try:
        flag = InteractionFlag(flag)
    except ValueError as e:
        raise InvalidInput(f"Invalid interaction type: {flag}") from e

    with storage_errors("updating interaction"):
        async with session_factory() as session:
            await _owned_item(session, user_id, item_id)

            query = select(Interaction).where(
                Interaction.user_id == user_id, Interaction.item_id == item_id
            )
            interaction = (await session.execute(query)).scalar_one_or_none()
            if interaction is None:
                interaction = Interaction(
                    user_id=user_id,
                    item_id=item_id,
                    is_read=False,
                    is_favorite=False,
                    is_read_later=False,
                )
                try:
                    async with session.begin_nested():
                        _apply_flag(interaction, flag, value)
                        session.add(interaction)
                except IntegrityError:
                    # Another request created the row first; update that one
                    interaction = (await session.execute(query)).scalar_one()
                    _apply_flag(interaction, flag, value)
            else:
                _apply_flag(interaction, flag, value)

            await session.commit()
            log.info(
                "interaction_updated", user_id=user_id, item_id=item_id, flag=flag.value, value=value
            )
            return {
                "is_read": interaction.is_read,
                "is_favorite": interaction.is_favorite,
                "is_read_later": interaction.is_read_later,
            }


async def list_items(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str | None,
    feed_id: int | None = None,
    flag: InteractionFlag | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ItemView]:
    """Items from the caller's active feeds, newest first, with the caller's flags."""
    user_id = require_user(user_id)

    query = (
        select(FeedItem, Interaction)
        .join(Feed, Feed.id == FeedItem.feed_id)
        .outerjoin(
            Interaction,
            and_(Interaction.item_id == FeedItem.id, Interaction.user_id == user_id),
        )
        .where(Feed.user_id == user_id, Feed.active.is_(True), Feed.deleted_at.is_(None))
        .order_by(FeedItem.published_at.desc(), FeedItem.id.desc())
        .offset(offset)
        .limit(limit)
    )
    if feed_id is not None:
        query = query.where(Feed.id == feed_id)
    if flag is not None:
        query = query.where(getattr(Interaction, flag.value).is_(True))

    with storage_errors("listing items"):
        async with session_factory() as session:
            rows = (await session.execute(query)).all()

    return [
        ItemView(
            id=item.id,
            feed_id=item.feed_id,
            item_type=item.item_type,
            title=item.title,
            link=item.link,
            description=item.description,
            thumbnail=item.thumbnail,
            published_at=item.published_at,
            published_inferred=item.published_inferred,
            is_read=bool(interaction and interaction.is_read),
            is_favorite=bool(interaction and interaction.is_favorite),
            is_read_later=bool(interaction and interaction.is_read_later),
        )
        for item, interaction in rows
    ]


async def feed_summary(
    session_factory: async_sessionmaker[AsyncSession], user_id: str | None
) -> FeedSummary:
    """Count the caller's undeleted feeds by type and their flagged interactions."""
    user_id = require_user(user_id)

    feeds_query = (
        select(Feed.type, func.count())
        .where(Feed.user_id == user_id, Feed.deleted_at.is_(None))
        .group_by(Feed.type)
    )
    flags_query = select(
        func.count().filter(Interaction.is_read.is_(True)),
        func.count().filter(Interaction.is_favorite.is_(True)),
        func.count().filter(Interaction.is_read_later.is_(True)),
    ).where(Interaction.user_id == user_id)

    with storage_errors("summarizing feeds"):
        async with session_factory() as session:
            by_type = dict((await session.execute(feeds_query)).all())
            read, favorites, read_later = (await session.execute(flags_query)).one()

    return FeedSummary(
        total_feeds=sum(by_type.values()),
        rss_feeds=by_type.get(FeedType.RSS.value, 0),
        youtube_feeds=by_type.get(FeedType.YOUTUBE.value, 0),
        total_read=read,
        total_favorites=favorites,
        total_read_later=read_later,
    )
