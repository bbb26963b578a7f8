from __future__ import annotations

import logging

from jobledger.jobs.errors import CallbackFault
from jobledger.jobs.functions import FUNCTIONS, FunctionRegistry

logger = logging.getLogger(__name__)


def invoke_finish(
    name: str,
    jobid: int,
    status: str,
    functions: FunctionRegistry | None = None,
) -> None:
    """Call the completion callback registered as ``name`` with ``(jobid, status)``.

    Runs synchronously on the calling thread and ignores the return value.
    Lookup failures surface as :class:`UnknownFunction`; anything the callback
    raises is re-raised as :class:`CallbackFault`.
    """

    registry = FUNCTIONS if functions is None else functions
    fn = registry.get(name)
    logger.info("   Finishing jobid %s with %s", jobid, name)
    try:
        fn(jobid, status)
    except Exception as exc:
        raise CallbackFault(name, jobid, exc) from exc
