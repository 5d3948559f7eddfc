# d1_tenancy/tenants/hooks.py
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from ..errors import HookFailedError

logger = logging.getLogger(__name__)


class HookFailurePolicy(str, Enum):
    """What to do when a lifecycle hook raises."""
    LOG = "log"
    RAISE = "raise"


@dataclass
class TenantHooks:
    """
    Optional callbacks around tenant database creation and deletion.

    Hooks may be plain functions or coroutine functions and are called with
    keyword arguments:

    - before_create(tenant_id, mode, actor)
    - after_create(tenant_id, database_name, database_id, mode, actor)
    - before_delete(tenant_id, database_name, database_id, mode, actor)
    - after_delete(tenant_id, mode, actor)
    """
    before_create: Optional[Callable[..., Any]] = None
    after_create: Optional[Callable[..., Any]] = None
    before_delete: Optional[Callable[..., Any]] = None
    after_delete: Optional[Callable[..., Any]] = None


async def run_hook(
    hook_name: str,
    hook: Optional[Callable[..., Any]],
    policy: HookFailurePolicy = HookFailurePolicy.LOG,
    **kwargs: Any
) -> None:
    """
    Invoke a lifecycle hook, awaiting it if it is async.

    Failures are always logged. With the 'raise' policy they are re-raised
    as HookFailedError; with 'log' the caller continues.
    """
    if hook is None:
        return
    try:
        result = hook(**kwargs)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Hook '{hook_name}' failed for tenant '{kwargs.get('tenant_id')}': {e}", exc_info=True)
        if HookFailurePolicy(policy) is HookFailurePolicy.RAISE:
            raise HookFailedError(hook_name, e) from e
