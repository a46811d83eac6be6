"""
Group activity report shared library.
"""
from . import constants
from .constants import (
    DEFAULT_MAX_WORKERS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RETRY_ATTEMPTS,
    PROVIDER_M365,
)
from .dispatcher import BoundedDispatcher, DispatchError, run_bounded
from .models import GroupActivity, ResultSet, RunSummary, WorkResult
from .utils import (
    AuthError,
    ProgressTracker,
    generate_run_id,
    get_timestamp,
    setup_logging,
    write_csv,
    write_json,
)

__all__ = [
    # Constants
    'constants',
    'DEFAULT_MAX_WORKERS',
    'DEFAULT_POLL_INTERVAL',
    'DEFAULT_RETRY_ATTEMPTS',
    'PROVIDER_M365',
    # Dispatcher
    'BoundedDispatcher',
    'DispatchError',
    'run_bounded',
    # Models
    'GroupActivity',
    'ResultSet',
    'RunSummary',
    'WorkResult',
    # Utils
    'AuthError',
    'ProgressTracker',
    'generate_run_id',
    'get_timestamp',
    'setup_logging',
    'write_csv',
    'write_json',
]
