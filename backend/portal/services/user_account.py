"""Lists, favorites, tags and search history of portal users."""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import and_, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from portal.models.access_token import AccessToken
from portal.models.resource import Resource, ResourceTag, Tag, UserList, UserResource
from portal.models.search import Search
from portal.models.user import User
from portal.services.session_store import session_store

logger = structlog.get_logger()

TAG_MAX_LENGTH = 64
_TAG_RE = re.compile(r'"[^"]*"|[^ ]+')


class ListPermissionError(Exception):
    """Raised when a user touches a list they do not own."""


def parse_tags(text: Optional[str], max_length: int = TAG_MAX_LENGTH) -> List[str]:
    """Split user input into tags.

    Quoted phrases stay together, quotes are removed, tags are lower-cased
    and cut at ``max_length``. Empty and duplicate tags are dropped.
    """
    tags: List[str] = []
    for word in _TAG_RE.findall((text or "").strip()):
        tag = word.replace('"', "").strip().lower()[:max_length]
        if tag and tag not in tags:
            tags.append(tag)
    return tags


async def get_or_create_resource(
    db: AsyncSession,
    record_id: str,
    source: str = "Solr",
    title: str = "",
    author: Optional[str] = None,
    year: Optional[int] = None,
) -> Resource:
    result = await db.execute(
        select(Resource).where(Resource.record_id == record_id, Resource.source == source)
    )
    resource = result.scalar_one_or_none()
    if resource is None:
        resource = Resource(record_id=record_id, source=source, title=(title or "")[:255], author=author, year=year)
        db.add(resource)
        await db.flush()
    elif title and not resource.title:
        resource.title = title[:255]
    return resource


async def get_or_create_tag(db: AsyncSession, text: str) -> Tag:
    result = await db.execute(select(Tag).where(Tag.tag == text))
    tag = result.scalar_one_or_none()
    if tag is None:
        tag = Tag(tag=text)
        db.add(tag)
        await db.flush()
    return tag


# Lists

async def get_list(db: AsyncSession, list_id: int) -> Optional[UserList]:
    return await db.get(UserList, list_id)


def check_list_readable(user_list: UserList, user: Optional[User]) -> None:
    if user_list.public or (user is not None and user_list.user_id == user.id):
        return
    raise ListPermissionError("list_access_denied")


def check_list_editable(user_list: UserList, user: Optional[User]) -> None:
    if user is None or user_list.user_id != user.id:
        raise ListPermissionError("list_access_denied")


async def get_user_lists(db: AsyncSession, user: User) -> List[Tuple[UserList, int]]:
    """Lists owned by ``user`` with their entry counts."""
    result = await db.execute(
        select(UserList, func.count(UserResource.id))
        .outerjoin(UserResource, UserResource.list_id == UserList.id)
        .where(UserList.user_id == user.id)
        .group_by(UserList.id)
        .order_by(UserList.title)
    )
    return [(row[0], row[1]) for row in result.all()]


async def create_list(
    db: AsyncSession,
    user: User,
    title: str,
    description: Optional[str] = None,
    public: bool = False,
) -> UserList:
    user_list = UserList(user_id=user.id, title=title, description=description, public=public)
    db.add(user_list)
    await db.flush()
    logger.info("List created", user_id=user.id, list_id=user_list.id)
    return user_list


async def update_list(db: AsyncSession, user: User, user_list: UserList, **changes) -> UserList:
    check_list_editable(user_list, user)
    for key in ("title", "description", "public"):
        if changes.get(key) is not None:
            setattr(user_list, key, changes[key])
    await db.flush()
    return user_list


async def delete_list(db: AsyncSession, user: User, user_list: UserList) -> None:
    check_list_editable(user_list, user)
    await db.execute(delete(ResourceTag).where(ResourceTag.list_id == user_list.id))
    await db.delete(user_list)
    await db.flush()
    logger.info("List deleted", user_id=user.id, list_id=user_list.id)


async def get_list_entries(db: AsyncSession, user_list: UserList) -> List[Tuple[Resource, UserResource]]:
    result = await db.execute(
        select(Resource, UserResource)
        .join(UserResource, UserResource.resource_id == Resource.id)
        .where(UserResource.list_id == user_list.id)
        .order_by(UserResource.saved.desc())
    )
    return [(row[0], row[1]) for row in result.all()]


async def save_record(
    db: AsyncSession,
    user: User,
    record_id: str,
    source: str = "Solr",
    title: str = "",
    list_id: Optional[int] = None,
    new_list_title: Optional[str] = None,
    notes: Optional[str] = None,
    tags: Optional[str] = None,
) -> Dict[str, Any]:
    """Save a record to one of the user's lists.

    A new list is created when ``list_id`` is not given; it is titled
    ``new_list_title`` (or "My Favorites" when the user has no list yet).
    """
    if list_id is not None:
        user_list = await get_list(db, list_id)
        if user_list is None:
            raise LookupError("list_not_found")
        check_list_editable(user_list, user)
    else:
        user_list = None
        if not new_list_title:
            existing = await db.execute(
                select(UserList).where(UserList.user_id == user.id).order_by(UserList.id).limit(1)
            )
            user_list = existing.scalar_one_or_none()
        if user_list is None:
            user_list = await create_list(db, user, new_list_title or "My Favorites")

    resource = await get_or_create_resource(db, record_id, source, title)
    result = await db.execute(
        select(UserResource).where(
            UserResource.user_id == user.id,
            UserResource.resource_id == resource.id,
            UserResource.list_id == user_list.id,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = UserResource(user_id=user.id, resource_id=resource.id, list_id=user_list.id, notes=notes)
        db.add(entry)
    elif notes is not None:
        entry.notes = notes

    added_tags = await add_tags(db, user, resource, parse_tags(tags), user_list.id) if tags else []
    await db.flush()
    return {"list_id": user_list.id, "resource_id": resource.id, "tags": added_tags}


async def remove_records(db: AsyncSession, user: User, user_list: UserList, record_ids: Sequence[str], source: str = "Solr") -> int:
    """Remove records from a list, along with the tags applied within it."""
    check_list_editable(user_list, user)
    resources = await db.execute(
        select(Resource.id).where(Resource.record_id.in_(list(record_ids)), Resource.source == source)
    )
    resource_ids = [r for r in resources.scalars().all()]
    if not resource_ids:
        return 0
    await db.execute(
        delete(ResourceTag).where(
            ResourceTag.list_id == user_list.id,
            ResourceTag.resource_id.in_(resource_ids),
            ResourceTag.user_id == user.id,
        )
    )
    result = await db.execute(
        delete(UserResource).where(
            UserResource.list_id == user_list.id,
            UserResource.resource_id.in_(resource_ids),
            UserResource.user_id == user.id,
        )
    )
    await db.flush()
    return result.rowcount or 0


async def get_favorites(db: AsyncSession, user: User) -> List[Tuple[Resource, UserResource]]:
    """All records the user saved, in any list."""
    result = await db.execute(
        select(Resource, UserResource)
        .join(UserResource, UserResource.resource_id == Resource.id)
        .where(UserResource.user_id == user.id)
        .order_by(UserResource.saved.desc())
    )
    return [(row[0], row[1]) for row in result.all()]


# Tags

async def add_tags(
    db: AsyncSession,
    user: User,
    resource: Resource,
    tags: Sequence[str],
    list_id: Optional[int] = None,
) -> List[str]:
    added = []
    for text in tags:
        tag = await get_or_create_tag(db, text)
        existing = await db.execute(
            select(ResourceTag.id).where(
                ResourceTag.resource_id == resource.id,
                ResourceTag.tag_id == tag.id,
                ResourceTag.user_id == user.id,
                ResourceTag.list_id.is_(None) if list_id is None else ResourceTag.list_id == list_id,
            )
        )
        if existing.first() is None:
            db.add(ResourceTag(resource_id=resource.id, tag_id=tag.id, user_id=user.id, list_id=list_id))
        added.append(text)
    await db.flush()
    return added


async def tag_record(db: AsyncSession, user: User, record_id: str, text: str, source: str = "Solr") -> List[str]:
    resource = await get_or_create_resource(db, record_id, source)
    return await add_tags(db, user, resource, parse_tags(text))


async def remove_tag(db: AsyncSession, user: User, record_id: str, tag_text: str, source: str = "Solr") -> int:
    result = await db.execute(
        select(ResourceTag.id)
        .join(Tag, Tag.id == ResourceTag.tag_id)
        .join(Resource, Resource.id == ResourceTag.resource_id)
        .where(
            ResourceTag.user_id == user.id,
            Resource.record_id == record_id,
            Resource.source == source,
            Tag.tag == tag_text.lower(),
        )
    )
    ids = list(result.scalars().all())
    if ids:
        await db.execute(delete(ResourceTag).where(ResourceTag.id.in_(ids)))
        await db.flush()
    return len(ids)


async def get_user_tags(db: AsyncSession, user: User) -> List[Dict[str, Any]]:
    """Tags used by ``user`` with the number of records carrying each."""
    result = await db.execute(
        select(Tag.tag, func.count(func.distinct(ResourceTag.resource_id)))
        .join(ResourceTag, ResourceTag.tag_id == Tag.id)
        .where(ResourceTag.user_id == user.id)
        .group_by(Tag.tag)
        .order_by(Tag.tag)
    )
    return [{"tag": tag, "count": count} for tag, count in result.all()]


def _tag_filter(user_id: Optional[int] = None, tag_id: Optional[int] = None, resource_id: Optional[int] = None):
    conditions = []
    if user_id is not None:
        conditions.append(ResourceTag.user_id == user_id)
    if tag_id is not None:
        conditions.append(ResourceTag.tag_id == tag_id)
    if resource_id is not None:
        conditions.append(ResourceTag.resource_id == resource_id)
    return and_(*conditions) if conditions else None


async def list_resource_tags(
    db: AsyncSession,
    user_id: Optional[int] = None,
    tag_id: Optional[int] = None,
    resource_id: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[int, List[ResourceTag]]:
    """Tag applications matching the filters, newest first, with the total count."""
    condition = _tag_filter(user_id, tag_id, resource_id)
    count_query = select(func.count(ResourceTag.id))
    query = (
        select(ResourceTag)
        .options(selectinload(ResourceTag.tag), selectinload(ResourceTag.resource))
        .order_by(ResourceTag.posted.desc(), ResourceTag.id.desc())
    )
    if condition is not None:
        count_query = count_query.where(condition)
        query = query.where(condition)
    total = (await db.execute(count_query)).scalar_one()
    rows = await db.execute(query.offset(offset).limit(limit))
    return total, list(rows.scalars().all())


async def delete_resource_tags(
    db: AsyncSession,
    ids: Optional[Sequence[int]] = None,
    user_id: Optional[int] = None,
    tag_id: Optional[int] = None,
    resource_id: Optional[int] = None,
) -> int:
    """Delete tag applications by id or by filter; returns the number deleted."""
    if ids:
        statement = delete(ResourceTag).where(ResourceTag.id.in_(list(ids)))
    else:
        condition = _tag_filter(user_id, tag_id, resource_id)
        if condition is None:
            return 0
        statement = delete(ResourceTag).where(condition)
    result = await db.execute(statement)
    await db.flush()
    return result.rowcount or 0


# Search history

async def save_search_history(db: AsyncSession, user: User, search_params: Dict[str, Any], result_count: int) -> Search:
    search = Search(user_id=user.id, search_params=search_params, result_count=result_count, saved=False)
    db.add(search)
    await db.flush()
    return search


async def get_searches(db: AsyncSession, user: User, saved: Optional[bool] = None) -> List[Search]:
    query = select(Search).where(Search.user_id == user.id)
    if saved is not None:
        query = query.where(Search.saved == saved)
    result = await db.execute(query.order_by(Search.created_at.desc(), Search.id.desc()))
    return list(result.scalars().all())


async def get_user_search(db: AsyncSession, user: User, search_id: int) -> Optional[Search]:
    search = await db.get(Search, search_id)
    if search is None or search.user_id != user.id:
        return None
    return search


async def expire_searches(db: AsyncSession, days: int) -> int:
    """Delete unsaved searches older than ``days`` days."""
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    result = await db.execute(
        delete(Search).where(Search.saved.is_(False), Search.created_at < cutoff)
    )
    await db.flush()
    count = result.rowcount or 0
    logger.info("Expired searches deleted", count=count, days=days)
    return count


# Account removal

async def purge_user(db: AsyncSession, user: User) -> None:
    """Delete a user and everything they own."""
    user_id = user.id
    await db.execute(delete(ResourceTag).where(ResourceTag.user_id == user_id))
    await db.execute(delete(UserResource).where(UserResource.user_id == user_id))
    await db.execute(delete(UserList).where(UserList.user_id == user_id))
    await db.execute(delete(Search).where(Search.user_id == user_id))
    await db.execute(delete(AccessToken).where(AccessToken.user_id == user_id))
    await db.delete(user)
    await db.flush()
    session_store.clear(user_id)
    logger.info("User purged", user_id=user_id)
