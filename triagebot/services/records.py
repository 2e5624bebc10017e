"""Get-or-create and set-replace helpers used inside a reconciliation transaction.

Every helper takes the caller's session, so the writes they make commit or
roll back together with the surrounding item upsert.
"""

from typing import Iterable
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..orm import Label, LabelOnItem, Participant, Repository, User


def _unique(values: Iterable[str]) -> list[str]:
    """Drop duplicates, keeping first-seen order."""
    return list(dict.fromkeys(v for v in values if v))


async def upsert_repository(session: AsyncSession, url: str, owner: str, name: str) -> Repository:
    """Create the repository on first sync; refresh owner/name on every sync."""
    await session.execute(
        insert(Repository)
        .values(url=url, owner=owner, name=name)
        .on_conflict_do_update(index_elements=["url"], set_={"owner": owner, "name": name})
    )
    result = await session.execute(select(Repository).where(Repository.url == url))
    return result.scalar_one()


async def resolve_author(session: AsyncSession, login: str) -> User:
    """Return the user with this GitHub login, creating a placeholder on first sight.

    The insert is a no-op when another sync already created the user.
    """
    await session.execute(
        insert(User).values(github_username=login).on_conflict_do_nothing(
            index_elements=["github_username"]
        )
    )
    result = await session.execute(select(User).where(User.github_username == login))
    return result.scalar_one()


async def get_or_create_labels(session: AsyncSession, names: Iterable[str]) -> dict[str, Label]:
    """Return the global Label rows for these names, creating missing ones."""
    names = _unique(names)
    if not names:
        return {}
    await session.execute(
        insert(Label)
        .values([{"id": str(uuid4()), "name": name} for name in names])
        .on_conflict_do_nothing(index_elements=["name"])
    )
    result = await session.execute(select(Label).where(Label.name.in_(names)))
    return {label.name: label for label in result.scalars()}


async def replace_labels(session: AsyncSession, github_item_id: str, names: Iterable[str]) -> list[str]:
    """Make the item's label set exactly ``names``.

    Only the difference is written, so unchanged associations keep their rows.
    Labels themselves are global and are never deleted here.

    Returns:
        The resulting label names.
    """
    labels = await get_or_create_labels(session, names)
    wanted = {label.id for label in labels.values()}

    result = await session.execute(
        select(LabelOnItem.label_id).where(LabelOnItem.github_item_id == github_item_id)
    )
    current = set(result.scalars())

    stale = current - wanted
    if stale:
        await session.execute(
            delete(LabelOnItem).where(
                LabelOnItem.github_item_id == github_item_id,
                LabelOnItem.label_id.in_(stale),
            )
        )
    for label_id in wanted - current:
        session.add(LabelOnItem(github_item_id=github_item_id, label_id=label_id))
    await session.flush()
    return sorted(labels)


async def replace_participants(
    session: AsyncSession, action_item_id: str, logins: Iterable[str]
) -> list[str]:
    """Make the action item's participant roster exactly ``logins``.

    The action item row must already be flushed.

    Returns:
        The resulting logins.
    """
    wanted = _unique(logins)

    result = await session.execute(
        select(Participant.login).where(Participant.action_item_id == action_item_id)
    )
    current = set(result.scalars())

    stale = current - set(wanted)
    if stale:
        await session.execute(
            delete(Participant).where(
                Participant.action_item_id == action_item_id,
                Participant.login.in_(stale),
            )
        )
    for login in wanted:
        if login not in current:
            session.add(Participant(action_item_id=action_item_id, login=login))
    await session.flush()
    return wanted
