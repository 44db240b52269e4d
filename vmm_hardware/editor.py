"""
Override editor bridge.

Renders a device (or the whole domain) to a temporary XML buffer, runs the
user's external editor on it as an asyncio subprocess, and merges the edited
text back through the codec. Each edit goes through

    idle -> exporting -> awaiting_editor -> reimporting -> applied | conflict | cancelled

A failed reimport (malformed XML) or a failed editor launch leaves the
buffer in ``awaiting_editor`` so the same file can be edited again.
"""

import asyncio
import hashlib
import os
import tempfile
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from .codec import decode_device, decode_domain, encode_device, encode_domain
from .config import EditorConfig
from .devices import device_diff
from .exceptions import EditorLaunchFailedError, EditSessionError, MalformedXmlError
from .logging import LogContext, get_logger

logger = get_logger(__name__)


class EditState(str, Enum):
    """Edit session states."""

    IDLE = "idle"
    EXPORTING = "exporting"
    AWAITING_EDITOR = "awaiting_editor"
    REIMPORTING = "reimporting"
    APPLIED = "applied"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({EditState.APPLIED, EditState.CONFLICT, EditState.CANCELLED})

_TRANSITIONS = {
    EditState.IDLE: {EditState.EXPORTING},
    EditState.EXPORTING: {EditState.AWAITING_EDITOR, EditState.CANCELLED},
    EditState.AWAITING_EDITOR: {EditState.REIMPORTING, EditState.CANCELLED},
    EditState.REIMPORTING: {
        EditState.AWAITING_EDITOR,
        EditState.APPLIED,
        EditState.CONFLICT,
        EditState.CANCELLED,
    },
}


def content_hash(text: str) -> str:
    """SHA-256 hex digest of buffer text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EditOutcome(BaseModel):
    """Result of reimporting an edit buffer."""

    status: EditState = Field(description="applied, conflict or cancelled")
    target: Optional[int] = Field(default=None, description="Device index, None for the whole domain")
    edited: Any = Field(default=None, description="Decoded edit result")
    current: Any = Field(default=None, description="In-memory value at reimport time")
    original: Any = Field(default=None, description="Value captured at export time")
    changed: List[str] = Field(default_factory=list, description="Fields the edit changed")


class EditBuffer:
    """
    Temporary file backing one edit session.

    Usable as a context manager; leaving the block deletes the file whatever
    state the edit reached.
    """

    def __init__(self, path: Path, target: Optional[int], original: Any, digest: str):
        self.path = path
        self.target = target
        self.original = original
        self.digest = digest
        self.state = EditState.IDLE

    def __enter__(self) -> "EditBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.discard()

    def __repr__(self) -> str:
        return f"EditBuffer(path={str(self.path)!r}, target={self.target!r}, state={self.state.value})"

    @property
    def exists(self) -> bool:
        return self.path.exists()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def read_text(self) -> str:
        return self.path.read_text(encoding="utf-8")

    def transition(self, state: EditState) -> None:
        """Move to ``state``; raises EditSessionError on an invalid transition."""
        if state not in _TRANSITIONS.get(self.state, ()):
            raise EditSessionError(
                f"Invalid edit state transition {self.state.value} -> {state.value}",
                details={"buffer": str(self.path)},
            )
        self.state = state
        if state in TERMINAL_STATES:
            self.discard()

    def discard(self) -> None:
        """Delete the temporary file if it is still there."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        logger.debug("Removed edit buffer {}", self.path)


class OverrideEditor:
    """Runs the external editor against device or domain XML."""

    def __init__(self, config: Optional[EditorConfig] = None):
        self.config = config or EditorConfig()

    def export(self, value: Any, target: Optional[int] = None) -> EditBuffer:
        """
        Write ``value`` (a device, or the whole document when ``target`` is
        None) to a new temporary buffer.
        """
        text = encode_domain(value) if target is None else encode_device(value)
        label = "domain" if target is None else f"dev{target}"
        fd, name = tempfile.mkstemp(prefix=f"vmm-{label}-", suffix=".xml", dir=self.config.temp_dir)

        buffer = EditBuffer(
            path=Path(name),
            target=target,
            original=value.model_copy(deep=True),
            digest=content_hash(text),
        )
        buffer.transition(EditState.EXPORTING)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        buffer.transition(EditState.AWAITING_EDITOR)
        logger.debug("Exported {} to {}", label, buffer.path)
        return buffer

    async def run(self, buffer: EditBuffer) -> int:
        """
        Launch the editor on the buffer and wait for it to exit.

        The exit status is returned but not interpreted. Cancelling the
        awaiting task terminates the editor and discards the buffer.

        Raises:
            EditorLaunchFailedError: if the editor command cannot be started
        """
        if buffer.state is not EditState.AWAITING_EDITOR:
            raise EditSessionError(
                f"Buffer is {buffer.state.value}, not awaiting the editor",
                details={"buffer": str(buffer.path)},
            )

        command = self.config.resolve_command() + [str(buffer.path)]
        with LogContext(edit_target=buffer.target, buffer=str(buffer.path)) as log:
            try:
                process = await asyncio.create_subprocess_exec(*command)
            except (FileNotFoundError, PermissionError) as e:
                log.error("Failed to launch editor {}: {}", command[0], e)
                raise EditorLaunchFailedError(
                    f"Failed to launch editor '{command[0]}': {e}",
                    command=command,
                    buffer_path=str(buffer.path),
                ) from e
            except asyncio.CancelledError:
                buffer.transition(EditState.CANCELLED)
                raise

            log.debug("Editor started (pid {})", process.pid)
            try:
                returncode = await process.wait()
            except asyncio.CancelledError:
                log.info("Edit cancelled, stopping editor (pid {})", process.pid)
                await self._terminate(process)
                buffer.transition(EditState.CANCELLED)
                raise

            log.debug("Editor exited with status {}", returncode)
            return returncode

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.terminate_timeout)
        except asyncio.TimeoutError:
            logger.warning("Editor (pid {}) ignored terminate, killing it", process.pid)
            process.kill()
            await process.wait()

    def reimport(self, buffer: EditBuffer, current: Any) -> EditOutcome:
        """
        Read the buffer back and decide the outcome.

        ``current`` is the in-memory value now held for the buffer's target.
        An unchanged buffer is cancelled; a changed one is applied unless
        ``current`` no longer matches what was exported, which is a conflict.

        Raises:
            MalformedXmlError: if the edited text does not parse; the buffer
                stays on disk and can be edited again
        """
        buffer.transition(EditState.REIMPORTING)
        try:
            text = buffer.read_text()
        except FileNotFoundError as e:
            buffer.transition(EditState.CANCELLED)
            raise EditSessionError(
                f"Edit buffer {buffer.path} disappeared",
                details={"buffer": str(buffer.path)},
            ) from e

        if content_hash(text) == buffer.digest:
            buffer.transition(EditState.CANCELLED)
            logger.info("Edit buffer unchanged, nothing to apply")
            return EditOutcome(
                status=EditState.CANCELLED,
                target=buffer.target,
                current=current,
                original=buffer.original,
            )

        try:
            edited = decode_domain(text) if buffer.target is None else decode_device(text)
        except MalformedXmlError as e:
            buffer.transition(EditState.AWAITING_EDITOR)
            logger.warning(
                "Edited XML is malformed at line {}, column {}: {}",
                e.line,
                e.column,
                e.message,
            )
            raise

        changed = device_diff(buffer.original, edited)
        if current != buffer.original:
            buffer.transition(EditState.CONFLICT)
            logger.warning("Edit conflicts with a concurrent change to target {}", buffer.target)
            return EditOutcome(
                status=EditState.CONFLICT,
                target=buffer.target,
                edited=edited,
                current=current,
                original=buffer.original,
                changed=changed,
            )

        buffer.transition(EditState.APPLIED)
        logger.info("Edit applied to target {} ({} fields changed)", buffer.target, len(changed))
        return EditOutcome(
            status=EditState.APPLIED,
            target=buffer.target,
            edited=edited,
            current=current,
            original=buffer.original,
            changed=changed,
        )
