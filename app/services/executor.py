# app/services/executor.py
"""
Failure boundary around a single work function call.
"""

import inspect
from typing import Any, TYPE_CHECKING

from app.core.exceptions import ItemSkippedError, UtilityError
from app.core.logging import get_logger
from app.schemas.job import WorkItemResult, WorkOutput

if TYPE_CHECKING:
    from app.core.jobs import WorkContext, WorkFunction, WorkItem

logger = get_logger(__name__)


def describe_error(exc: BaseException) -> str:
    """Human readable, never empty."""
    if isinstance(exc, UtilityError) and exc.message:
        return exc.message
    text = str(exc).strip()
    return text or exc.__class__.__name__


def skipped_result(item: "WorkItem", index: int, reason: str) -> WorkItemResult:
    return WorkItemResult(
        identity=item.identity, index=index, status="skipped", message=reason
    )


async def execute_work_item(
    work_fn: "WorkFunction",
    item: "WorkItem",
    config: Any,
    context: "WorkContext",
) -> WorkItemResult:
    """
    Run ``work_fn(payload, config, context)`` and convert the outcome into a
    terminal WorkItemResult. Never raises for errors raised by the work function.
    """
    try:
        output = work_fn(item.payload, config, context)
        if inspect.isawaitable(output):
            output = await output
        if output is None:
            output = WorkOutput()
        elif not isinstance(output, WorkOutput):
            raise TypeError(
                f"Work function returned {type(output).__name__}, expected WorkOutput"
            )

        return WorkItemResult(
            identity=item.identity,
            index=context.index,
            status="success",
            message=output.message,
            artifact_location=output.artifact_location,
            archive_name=output.archive_name,
            details=output.details,
        )

    except ItemSkippedError as e:
        logger.info(
            "Work item skipped",
            job_id=context.job_id,
            identity=item.identity,
            reason=e.message,
        )
        return skipped_result(item, context.index, describe_error(e))

    except Exception as e:
        error = describe_error(e)
        logger.warning(
            "Work item failed",
            job_id=context.job_id,
            identity=item.identity,
            error=error,
        )
        return WorkItemResult(
            identity=item.identity,
            index=context.index,
            status="failed",
            message=error,
            error=error,
        )
