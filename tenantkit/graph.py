"""
Microsoft Graph session helpers.

Each dispatched group opens its own credential and client through
``graph_session`` so no connection state is shared between worker threads.

Requirements:
- Azure AD App Registration with the following API permissions (Application type):
  - Group.Read.All (group lookup, transitive membership)
  - User.Read.All (member details)
  - AuditLog.Read.All (signInActivity)
  - MailboxSettings.Read (mailbox probe)
"""
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, List

from azure.identity import ClientSecretCredential
from msgraph.graph_service_client import GraphServiceClient

from .constants import GRAPH_SCOPE, THROTTLING_STATUS_CODES

logger = logging.getLogger(__name__)


def get_graph_client(credential: ClientSecretCredential) -> GraphServiceClient:
    """Create Microsoft Graph API client for an app-only credential."""
    return GraphServiceClient(credentials=credential, scopes=[GRAPH_SCOPE])


@contextmanager
def graph_session(tenant_id: str, client_id: str, client_secret: str) -> Iterator[GraphServiceClient]:
    """
    Open a self-contained Graph session and close its credential on exit.

    Used as the dispatcher's per-item resource factory.
    """
    credential = ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret
    )
    try:
        yield get_graph_client(credential)
    finally:
        credential.close()


async def collect_all_pages(
    initial_response: Any,
    get_next_page: Callable[[str], Awaitable[Any]],
) -> List[Any]:
    """Collect all items from a paginated Graph API response.

    Microsoft Graph returns at most one page per call; this follows
    ``odata_next_link`` until it runs out.

    Args:
        initial_response: The first response from a Graph API call
        get_next_page: Async function returning the next page for a next_link

    Returns:
        List of all items from all pages
    """
    all_items: List[Any] = []
    response = initial_response

    while response:
        if getattr(response, 'value', None):
            all_items.extend(response.value)

        next_link = getattr(response, 'odata_next_link', None)
        if not next_link:
            break
        response = await get_next_page(next_link)

    return all_items


def is_throttling_error(exc: BaseException) -> bool:
    """True for Graph errors worth retrying (429 / 503 / 504)."""
    return getattr(exc, 'response_status_code', None) in THROTTLING_STATUS_CODES
