"""Capability router: maps command deliveries onto executors."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, MutableMapping

from hostactuator.infra.broker.protocol import CommandDelivery, CommandResult
from hostactuator.infra.files import FileExecutor, FileOperationResult
from hostactuator.infra.shell import ShellExecutor
from hostactuator.models.outcome import ResultStatus
from hostactuator.models.payloads import (
    EditPayload,
    ExecPayload,
    PayloadError,
    ProcessPayload,
    ReadPayload,
    WritePayload,
    parse_payload,
)
from hostactuator.services.session_controller import SessionController

logger = logging.getLogger(__name__)

BRAIN_MODE_ERROR = "Brain-mode actuator does not execute commands"

CancelAction = Callable[[], None]


class CommandRouter:
    """Validates a delivery's payload and runs it on the matching executor.

    ``route`` yields one CommandResult per reportable outcome: a single
    result for most capabilities, or RUNNING followed by a terminal result
    when a shell command yields to the background.
    """

    def __init__(
        self,
        shell: ShellExecutor,
        sessions: SessionController,
        files: FileExecutor,
        brain_mode: bool = False,
    ) -> None:
        self._shell = shell
        self._sessions = sessions
        self._files = files
        self._brain_mode = brain_mode

    async def route(
        self,
        delivery: CommandDelivery,
        in_flight: MutableMapping[str, CancelAction],
    ) -> AsyncIterator[CommandResult]:
        if self._brain_mode:
            yield CommandResult.failed(delivery.id, BRAIN_MODE_ERROR)
            return

        try:
            payload = parse_payload(delivery.capability, delivery.payload)
        except PayloadError as e:
            logger.warning("Rejected command %s (%s): %s", delivery.id, delivery.capability, e)
            yield CommandResult.failed(delivery.id, str(e))
            return

        if isinstance(payload, ExecPayload):
            async for result in self._exec(delivery.id, payload, in_flight):
                yield result
        elif isinstance(payload, ProcessPayload):
            action = await self._sessions.handle(payload)
            status = ResultStatus.COMPLETED if action.success else ResultStatus.FAILED
            yield CommandResult(id=delivery.id, status=status, result=action.to_result())
        elif isinstance(payload, ReadPayload):
            yield self._file_result(delivery.id, self._files.read(payload), with_content=True)
        elif isinstance(payload, WritePayload):
            yield self._file_result(delivery.id, self._files.write(payload))
        elif isinstance(payload, EditPayload):
            yield self._file_result(delivery.id, self._files.edit(payload))

    async def _exec(
        self,
        command_id: str,
        payload: ExecPayload,
        in_flight: MutableMapping[str, CancelAction],
    ) -> AsyncIterator[CommandResult]:
        run = self._shell.prepare(payload)
        in_flight[command_id] = run.terminate
        await run.spawn()
        async for outcome in run.outcomes():
            yield CommandResult(id=command_id, status=outcome.status, result=outcome.to_result())

    @staticmethod
    def _file_result(
        command_id: str, result: FileOperationResult, with_content: bool = False
    ) -> CommandResult:
        if not result.success:
            return CommandResult.failed(command_id, result.error)
        body: dict = {}
        if with_content:
            body = {
                "content": result.content,
                "linesRead": result.lines_read,
                "truncated": result.truncated,
            }
        return CommandResult(id=command_id, status=ResultStatus.COMPLETED, result=body)
