"""Request and response models for the command routes."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from rcondispatch.rconclient import BulkResult, CommandResult, JobResult


class ExecuteRequest(BaseModel):
    """Commands to run on one server.

    :param commands: Console commands, run in order
    :param delay: Milliseconds between commands, default 200
    :param stop_on_fail: Stop at the first failed command, default true
    """

    model_config = ConfigDict(populate_by_name=True)

    commands: list[str]
    delay: int | None = Field(default=None, ge=0)
    stop_on_fail: bool | None = Field(default=None, alias="stopOnFail")


class BulkExecuteRequest(ExecuteRequest):
    """Commands to run on several servers concurrently."""

    server_ids: list[str] = Field(alias="serverIds")


class ChangeMapRequest(BaseModel):
    """Map change for one server.

    A workshop id takes precedence over a map name.

    :param map: Built-in map name, loaded with ``changelevel``
    :param workshop_id: Workshop map id, loaded with ``host_workshop_map``
    :param server_commands: Commands to run after the map command
    """

    model_config = ConfigDict(populate_by_name=True)

    map: str | None = None
    workshop_id: int | str | None = Field(default=None, alias="workshopId")
    server_commands: list[str] = Field(default_factory=list, alias="serverCommands")

    @model_validator(mode="after")
    def _require_map_or_workshop_id(self) -> ChangeMapRequest:
        if not self.map and not self.workshop_id:
            msg = "map or workshopId required"
            raise ValueError(msg)
        return self

    def to_commands(self) -> list[str]:
        """Build the command list for this map change."""
        map_command = (
            f"host_workshop_map {self.workshop_id}"
            if self.workshop_id
            else f"changelevel {self.map}"
        )
        return [map_command, *self.server_commands]


class BulkChangeMapRequest(ChangeMapRequest):
    """Map change for several servers concurrently."""

    server_ids: list[str] = Field(alias="serverIds")


class CommandResultResponse(BaseModel):
    """Result of one console command."""

    ok: bool
    output: str | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, result: CommandResult) -> CommandResultResponse:
        return cls(ok=result.ok, output=result.output, error=result.error)


class ExecuteResponse(BaseModel):
    """Ordered command results for one server.

    ``error`` is set when the server could not be reached at all, in which
    case ``results`` is empty and ``failed`` is true.
    """

    results: list[CommandResultResponse]
    failed: bool
    error: str | None = None

    @classmethod
    def from_job_result(cls, job_result: JobResult) -> ExecuteResponse:
        return cls(
            results=[CommandResultResponse.from_result(r) for r in job_result.results],
            failed=job_result.failed,
        )

    @classmethod
    def from_error(cls, error: str) -> ExecuteResponse:
        return cls(results=[], failed=True, error=error)


class BulkResultResponse(BaseModel):
    """Per-server entry of a bulk response."""

    model_config = ConfigDict(populate_by_name=True)

    server_id: str = Field(alias="serverId")
    results: list[CommandResultResponse] | None = None
    failed: bool | None = None
    error: str | None = None

    @classmethod
    def from_bulk_result(cls, bulk_result: BulkResult) -> BulkResultResponse:
        results = (
            None
            if bulk_result.results is None
            else [CommandResultResponse.from_result(r) for r in bulk_result.results]
        )
        return cls(
            server_id=bulk_result.server_id,
            results=results,
            failed=bulk_result.failed,
            error=bulk_result.error,
        )


class BulkResponse(BaseModel):
    """Entries for every server of a bulk request."""

    results: list[BulkResultResponse]


class HealthResponse(BaseModel):
    """Liveness information."""

    ok: bool
    queues: int
