"""
Constants for the group activity report.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_MAX_WORKERS = 10
DEFAULT_POLL_INTERVAL = 0.2  # seconds between completion checks
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_OUTPUT_DIR = "./gma_output"
DEFAULT_SMTP_PORT = 587

# =============================================================================
# Sign-in Recency Windows (days)
# =============================================================================

RECENT_WINDOW_DAYS = 30
MEDIUM_WINDOW_DAYS = 90
STALE_WINDOW_DAYS = 180

# =============================================================================
# Microsoft Graph
# =============================================================================

GRAPH_SCOPE = "https://graph.microsoft.com/.default"
GRAPH_PAGE_SIZE = 999

ODATA_USER_TYPE = "#microsoft.graph.user"
ODATA_GROUP_TYPE = "#microsoft.graph.group"

# HTTP status codes worth retrying (throttling / transient backend errors)
THROTTLING_STATUS_CODES = {429, 503, 504}

# Error codes returned by mailboxSettings when the user has no mailbox
NO_MAILBOX_ERROR_CODES = {
    'MailboxNotEnabledForRESTAPI',
    'MailboxNotFound',
    'ResourceNotFound',
    'ErrorInvalidUser',
}

USER_SELECT_FIELDS = [
    "id",
    "displayName",
    "userPrincipalName",
    "mail",
    "accountEnabled",
    "signInActivity",
]

GROUP_SELECT_FIELDS = [
    "id",
    "displayName",
    "mail",
    "mailEnabled",
    "securityEnabled",
    "groupTypes",
]

# =============================================================================
# Group Categories
# =============================================================================

CATEGORY_M365 = "Microsoft365"
CATEGORY_SECURITY = "Security"
CATEGORY_MAIL_SECURITY = "MailEnabledSecurity"
CATEGORY_DISTRIBUTION = "Distribution"
CATEGORY_UNKNOWN = "Unknown"
DYNAMIC_SUFFIX = " (Dynamic)"

# =============================================================================
# Result Status
# =============================================================================

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"

# =============================================================================
# Providers
# =============================================================================

PROVIDER_M365 = "m365"
