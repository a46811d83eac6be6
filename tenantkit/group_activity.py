"""
Group mailbox activity worker.

For one group identifier (object ID, mail address or display name):
resolve the group, classify it, enumerate transitive user members without
duplicates, probe each member for an Exchange Online mailbox and bucket the
member's last sign-in into recency windows.

The Graph SDK is async; each worker thread runs its group on a private event
loop via ``asyncio.run`` with the client handed in by the dispatcher.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph.generated.groups.groups_request_builder import GroupsRequestBuilder
from msgraph.generated.groups.item.group_item_request_builder import GroupItemRequestBuilder
from msgraph.generated.groups.item.transitive_members.transitive_members_request_builder import (
    TransitiveMembersRequestBuilder,
)
from msgraph.generated.models.o_data_errors.o_data_error import ODataError
from msgraph.generated.users.item.user_item_request_builder import UserItemRequestBuilder

from .constants import (
    CATEGORY_DISTRIBUTION,
    CATEGORY_M365,
    CATEGORY_MAIL_SECURITY,
    CATEGORY_SECURITY,
    CATEGORY_UNKNOWN,
    DEFAULT_RETRY_ATTEMPTS,
    DYNAMIC_SUFFIX,
    GRAPH_PAGE_SIZE,
    GROUP_SELECT_FIELDS,
    MEDIUM_WINDOW_DAYS,
    NO_MAILBOX_ERROR_CODES,
    ODATA_GROUP_TYPE,
    ODATA_USER_TYPE,
    PROVIDER_M365,
    RECENT_WINDOW_DAYS,
    STALE_WINDOW_DAYS,
    USER_SELECT_FIELDS,
)
from .graph import collect_all_pages, is_throttling_error
from .models import GroupActivity
from .utils import check_and_raise_auth_error, retry_with_backoff

logger = logging.getLogger(__name__)

GUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE
)


class GroupResolutionError(Exception):
    """Base class for group lookup failures."""


class GroupNotFoundError(GroupResolutionError):
    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__("not found")


class AmbiguousGroupError(GroupResolutionError):
    def __init__(self, identifier: str, count: int):
        self.identifier = identifier
        self.count = count
        super().__init__(f"ambiguous: {count} groups match '{identifier}'")


def _error_code(exc: BaseException) -> Optional[str]:
    error = getattr(exc, 'error', None)
    return getattr(error, 'code', None) if error else None


@retry_with_backoff(max_attempts=DEFAULT_RETRY_ATTEMPTS, min_wait=2, max_wait=30,
                    predicate=is_throttling_error)
async def _graph_call(request, *args, **kwargs) -> Any:
    """Await one Graph request, retrying when throttled."""
    return await request(*args, **kwargs)


# =============================================================================
# Group Resolution
# =============================================================================

def classify_group(group: Any) -> str:
    """Map Graph group flags to a report category."""
    group_types = getattr(group, 'group_types', None) or []
    mail_enabled = bool(getattr(group, 'mail_enabled', False))
    security_enabled = bool(getattr(group, 'security_enabled', False))

    if 'Unified' in group_types:
        category = CATEGORY_M365
    elif mail_enabled and security_enabled:
        category = CATEGORY_MAIL_SECURITY
    elif security_enabled:
        category = CATEGORY_SECURITY
    elif mail_enabled:
        category = CATEGORY_DISTRIBUTION
    else:
        category = CATEGORY_UNKNOWN

    if 'DynamicMembership' in group_types:
        category += DYNAMIC_SUFFIX
    return category


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


async def resolve_group(client: Any, identifier: str) -> Any:
    """
    Look a group up by object ID, mail address or display name.

    Raises:
        GroupNotFoundError: No group matches.
        AmbiguousGroupError: More than one group matches a name or address.
    """
    identifier = identifier.strip()

    if GUID_PATTERN.match(identifier):
        config = RequestConfiguration(
            query_parameters=GroupItemRequestBuilder.GroupItemRequestBuilderGetQueryParameters(
                select=GROUP_SELECT_FIELDS,
            )
        )
        try:
            group = await _graph_call(
                client.groups.by_group_id(identifier).get, request_configuration=config
            )
        except ODataError as e:
            if e.response_status_code == 404 or _error_code(e) == 'Request_ResourceNotFound':
                raise GroupNotFoundError(identifier) from e
            raise
        if not group:
            raise GroupNotFoundError(identifier)
        return group

    field = 'mail' if '@' in identifier else 'displayName'
    config = RequestConfiguration(
        query_parameters=GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
            filter=f"{field} eq '{_odata_quote(identifier)}'",
            select=GROUP_SELECT_FIELDS,
        )
    )
    response = await _graph_call(client.groups.get, request_configuration=config)
    matches = list(response.value) if response and response.value else []

    if not matches:
        raise GroupNotFoundError(identifier)
    if len(matches) > 1:
        raise AmbiguousGroupError(identifier, len(matches))
    return matches[0]


# =============================================================================
# Membership
# =============================================================================

async def list_member_users(client: Any, group_id: str) -> Tuple[List[Any], int]:
    """
    Return (unique user members, nested group count) for a group.

    Membership is transitive, so users reachable through several nested
    groups are counted once.
    """
    members_builder = client.groups.by_group_id(group_id).transitive_members
    config = RequestConfiguration(
        query_parameters=TransitiveMembersRequestBuilder.TransitiveMembersRequestBuilderGetQueryParameters(
            top=GRAPH_PAGE_SIZE,
        )
    )
    first_page = await _graph_call(members_builder.get, request_configuration=config)

    async def next_page(link: str) -> Any:
        return await _graph_call(members_builder.with_url(link).get)

    members = await collect_all_pages(first_page, next_page)

    users = {}
    nested_groups = set()
    for member in members:
        odata_type = getattr(member, 'odata_type', None)
        if odata_type == ODATA_USER_TYPE:
            users.setdefault(member.id, member)
        elif odata_type == ODATA_GROUP_TYPE:
            nested_groups.add(member.id)

    logger.debug(f"Group {group_id}: {len(members)} members, {len(users)} unique users")
    return list(users.values()), len(nested_groups)


async def fetch_user(client: Any, user_id: str) -> Optional[Any]:
    """
    Fetch a user with sign-in activity.

    Returns None when the tenant cannot expose signInActivity (missing
    AuditLog permission or Entra ID P1 licence).
    """
    config = RequestConfiguration(
        query_parameters=UserItemRequestBuilder.UserItemRequestBuilderGetQueryParameters(
            select=USER_SELECT_FIELDS,
        )
    )
    try:
        return await _graph_call(client.users.by_user_id(user_id).get, request_configuration=config)
    except ODataError as e:
        if e.response_status_code == 403:
            logger.debug(f"Sign-in activity unavailable for user {user_id}: {_error_code(e)}")
            return None
        raise


async def has_mailbox(client: Any, user: Any) -> bool:
    """Probe mailboxSettings; users without a mailbox get a known error code."""
    if not getattr(user, 'mail', None):
        return False

    try:
        await _graph_call(client.users.by_user_id(user.id).mailbox_settings.get)
    except ODataError as e:
        if _error_code(e) in NO_MAILBOX_ERROR_CODES or e.response_status_code == 404:
            logger.debug(f"User {user.id} has no mailbox")
            return False
        raise
    return True


# =============================================================================
# Sign-in Recency
# =============================================================================

def sign_in_age_days(user: Any, now: datetime) -> Optional[int]:
    """Days since the user's most recent sign-in, or None if never."""
    activity = getattr(user, 'sign_in_activity', None)
    if not activity:
        return None

    timestamps = [
        ts for ts in (
            getattr(activity, 'last_sign_in_date_time', None),
            getattr(activity, 'last_non_interactive_sign_in_date_time', None),
        )
        if ts
    ]
    if not timestamps:
        return None

    latest = max(ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc) for ts in timestamps)
    return max(0, (now - latest).days)


def add_sign_in(activity: GroupActivity, age_days: Optional[int]) -> None:
    """Count one member into exactly one recency bucket."""
    if age_days is None:
        activity.never_signed_in += 1
    elif age_days <= RECENT_WINDOW_DAYS:
        activity.active_30_days += 1
    elif age_days <= MEDIUM_WINDOW_DAYS:
        activity.active_90_days += 1
    elif age_days <= STALE_WINDOW_DAYS:
        activity.active_180_days += 1
    else:
        activity.inactive_over_180_days += 1


# =============================================================================
# Group Collector
# =============================================================================

async def collect_group_activity(
    client: Any,
    identifier: str,
    now: Optional[datetime] = None,
) -> GroupActivity:
    """Build the GroupActivity aggregate for one group identifier."""
    now = now or datetime.now(timezone.utc)

    group = await resolve_group(client, identifier)
    users, nested_count = await list_member_users(client, group.id)

    activity = GroupActivity(
        group_id=group.id,
        display_name=group.display_name or identifier,
        category=classify_group(group),
        mail=getattr(group, 'mail', None),
        member_count=len(users),
        nested_group_count=nested_count,
        metadata={'requested_as': identifier},
    )

    for member in users:
        user = await fetch_user(client, member.id)
        if await has_mailbox(client, user or member):
            activity.mailbox_count += 1
        else:
            activity.no_mailbox_count += 1

        if user is None:
            activity.sign_in_unavailable += 1
        else:
            add_sign_in(activity, sign_in_age_days(user, now))

    logger.info(
        f"{activity.display_name}: {activity.member_count} members, "
        f"{activity.mailbox_count} mailboxes, {activity.active_30_days} active in 30 days"
    )
    return activity


class GroupActivityWorker:
    """
    Dispatcher worker: ``worker(identifier, graph_client) -> GroupActivity``.

    Auth failures are re-raised as AuthError so the failure record names
    them; everything else propagates unchanged to the dispatcher.
    """

    def __init__(self, now: Optional[datetime] = None):
        self.now = now

    def __call__(self, identifier: str, client: Any) -> GroupActivity:
        try:
            return asyncio.run(collect_group_activity(client, identifier, now=self.now))
        except Exception as e:
            check_and_raise_auth_error(e, f"read group {identifier}", PROVIDER_M365)
            raise
