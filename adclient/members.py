"""
Group membership reconciliation.

Adding or removing members rewrites a group's whole ``member`` attribute in
one replace operation, so a change is either entirely visible or not at all.
Candidates are resolved in parallel, each on its own short-lived connection,
and nothing is written until every lookup has finished.
"""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING

from .exceptions import DirectoryError, NotFoundError, ResolutionError
from .models import GetGroupRequest, GetUserRequest, Group, User

if TYPE_CHECKING:
    from .client import Client

#: The multi-valued attribute that lists a group's members.
MEMBER_ATTRIBUTE = "member"


class MembershipReconciler:
    """
    Computes and applies membership changes for groups.

    Args:
        client: used to resolve groups and users and to reach the session

    Keyword Args:
        max_workers: the most candidate lookups run at once

    """

    def __init__(self, client: "Client", max_workers: int = 8) -> None:
        self.client = client
        self.max_workers = max_workers

    @property
    def session(self):
        return self.client.session

    @property
    def logger(self):
        return self.client.logger

    def _resolve(self, user_id: str) -> User | None:
        handle = self.session.new_connection()
        try:
            return self.client.find_user(
                GetUserRequest(id=user_id, skip_groups_search=True), handle=handle
            )
        finally:
            self.session.close_connection(handle)

    def _resolve_all(self, member_ids: tuple[str, ...]) -> list[User | None]:
        """
        Look up every candidate in parallel and wait for all of them.

        Results come back in the order of ``member_ids``, whatever order the
        lookups finished in.

        Raises:
            ResolutionError: any lookup failed

        """
        workers = max(1, min(self.max_workers, len(member_ids)))
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="adclient-members"
        ) as executor:
            futures: list[Future] = [
                executor.submit(self._resolve, member_id) for member_id in member_ids
            ]
            wait(futures)
        users: list[User | None] = []
        for member_id, future in zip(member_ids, futures, strict=True):
            try:
                users.append(future.result())
            except DirectoryError as exc:
                msg = f"can't get account '{member_id}': {exc}"
                raise ResolutionError(msg, member_id) from exc
        return users

    def _get_group(self, group_id: str) -> Group:
        group = self.client.get_group(GetGroupRequest(id=group_id))
        if group is None:
            msg = f"group '{group_id}' not found by ID"
            raise NotFoundError(msg)
        return group

    def add_members(self, group_id: str, *member_ids: str) -> int:
        """
        Make ``member_ids`` members of group ``group_id``.

        Candidates that do not exist or are already members are skipped.  New
        members are appended after the existing ones, in the order given.

        Raises:
            NotFoundError: there is no such group
            ResolutionError: looking up one of the candidates failed; nothing
                was written

        Returns:
            The number of members added.

        """
        group = self._get_group(group_id)
        if not member_ids:
            return 0
        existing = group.members_dn() or []
        to_add: list[str] = []
        for member_id, user in zip(member_ids, self._resolve_all(member_ids), strict=True):
            if user is None:
                self.logger.debug(
                    "Account '%s' being added to '%s' wasn't found", member_id, group_id
                )
                continue
            if group.is_member(user.id) or user.dn in existing:
                self.logger.debug(
                    "The adding account '%s' is already a member of the group '%s'",
                    member_id,
                    group_id,
                )
                continue
            if user.dn not in to_add:
                to_add.append(user.dn)
        if not to_add:
            return 0
        new_members = existing + to_add
        self.logger.debug(
            "Adding new group members to '%s'; Old count: %d; New count: %d",
            group_id,
            len(existing),
            len(new_members),
        )
        self.session.modify_replace(group.dn, MEMBER_ATTRIBUTE, new_members)
        return len(to_add)

    def remove_members(self, group_id: str, *member_ids: str) -> int:
        """
        Remove ``member_ids`` from group ``group_id``.

        Candidates that do not exist or are not members are skipped.  The
        remaining members keep their order.

        Raises:
            NotFoundError: there is no such group
            ResolutionError: looking up one of the candidates failed; nothing
                was written

        Returns:
            The number of members removed.

        """
        group = self._get_group(group_id)
        if not member_ids:
            return 0
        existing = group.members_dn() or []
        to_remove: list[str] = []
        for member_id, user in zip(member_ids, self._resolve_all(member_ids), strict=True):
            if user is None:
                self.logger.debug(
                    "Account '%s' being deleted from '%s' wasn't found", member_id, group_id
                )
                continue
            if not group.is_member(user.id):
                self.logger.debug(
                    "The deleting account '%s' already isn't a member of the group '%s'",
                    member_id,
                    group_id,
                )
                continue
            if user.dn not in to_remove:
                to_remove.append(user.dn)
        if not to_remove:
            return 0
        new_members = [dn for dn in existing if dn not in to_remove]
        removed = len(existing) - len(new_members)
        if not removed:
            return 0
        self.logger.debug(
            "Deleting members from group '%s'; Old count: %d; New count: %d",
            group_id,
            len(existing),
            len(new_members),
        )
        self.session.modify_replace(group.dn, MEMBER_ATTRIBUTE, new_members)
        return removed
