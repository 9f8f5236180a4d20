"""Router for handling RCON command requests."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException

from rcondispatch.dispatch import EnqueueOptions
from rcondispatch.rconclient import DispatcherClosedError, RCONDispatchError

from .models import (
    BulkChangeMapRequest,
    BulkExecuteRequest,
    BulkResponse,
    BulkResultResponse,
    ChangeMapRequest,
    ExecuteRequest,
    ExecuteResponse,
    HealthResponse,
)

if TYPE_CHECKING:
    from rcondispatch.dispatch import Dispatcher

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)

CHANGE_MAP_OPTIONS = EnqueueOptions(stop_on_fail=True, delay_ms=500)


async def _execute(
    dispatcher: Dispatcher,
    server_id: str,
    commands: list[str],
    options: EnqueueOptions,
) -> ExecuteResponse:
    """Run commands on one server, reporting target-level failures as data."""
    try:
        job_result = await dispatcher.enqueue_commands(server_id, commands, options)
    except DispatcherClosedError as e:
        raise HTTPException(
            status_code=500,
            detail="Error queuing commands: dispatcher shutting down",
        ) from e
    except RCONDispatchError as e:
        LOGGER.warning("Commands for server %s failed: %s", server_id, e)
        return ExecuteResponse.from_error(str(e))

    return ExecuteResponse.from_job_result(job_result)


async def _execute_bulk(
    dispatcher: Dispatcher,
    server_ids: list[str],
    commands: list[str],
    options: EnqueueOptions,
) -> BulkResponse:
    """Run commands on several servers; never fails as a whole."""
    bulk_results = await dispatcher.enqueue_bulk(server_ids, commands, options)
    return BulkResponse(
        results=[BulkResultResponse.from_bulk_result(r) for r in bulk_results],
    )


def configure_command_router(
    router: APIRouter,
    dispatcher: Dispatcher,
) -> APIRouter:
    """Configure the command router with necessary dependencies.

    Bulk routes are registered first so ``bulk`` is never taken for a
    server id.

    :param router: The FastAPI APIRouter to configure
    :param dispatcher: The Dispatcher for queuing commands
    :return: The configured APIRouter
    """

    @router.post(
        "/bulk/execute",
        response_model=BulkResponse,
        response_model_exclude_none=True,
    )
    async def bulk_execute(request: BulkExecuteRequest) -> BulkResponse:
        options = EnqueueOptions(
            stop_on_fail=request.stop_on_fail,
            delay_ms=request.delay,
        )
        return await _execute_bulk(
            dispatcher,
            request.server_ids,
            request.commands,
            options,
        )

    @router.post(
        "/bulk/change-map",
        response_model=BulkResponse,
        response_model_exclude_none=True,
    )
    async def bulk_change_map(request: BulkChangeMapRequest) -> BulkResponse:
        return await _execute_bulk(
            dispatcher,
            request.server_ids,
            request.to_commands(),
            CHANGE_MAP_OPTIONS,
        )

    @router.post(
        "/{server_id}/execute",
        response_model=ExecuteResponse,
        response_model_exclude_none=True,
    )
    async def execute(server_id: str, request: ExecuteRequest) -> ExecuteResponse:
        options = EnqueueOptions(
            stop_on_fail=request.stop_on_fail,
            delay_ms=request.delay,
        )
        return await _execute(dispatcher, server_id, request.commands, options)

    @router.post(
        "/{server_id}/change-map",
        response_model=ExecuteResponse,
        response_model_exclude_none=True,
    )
    async def change_map(server_id: str, request: ChangeMapRequest) -> ExecuteResponse:
        return await _execute(
            dispatcher,
            server_id,
            request.to_commands(),
            CHANGE_MAP_OPTIONS,
        )

    return router


def configure_health_router(
    router: APIRouter,
    dispatcher: Dispatcher,
) -> APIRouter:
    """Configure the liveness route.

    :param router: The FastAPI APIRouter to configure
    :param dispatcher: The Dispatcher whose queues are reported
    :return: The configured APIRouter
    """

    @router.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(ok=True, queues=dispatcher.queue_count)

    return router
