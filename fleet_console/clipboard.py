import asyncio
import logging
import shlex


logger = logging.getLogger(__name__)


class ClipboardError(RuntimeError):
    pass


async def _pipe_to_command(command: str, text: str) -> None:
    argv = shlex.split(command)
    if not argv:
        raise ClipboardError("empty clipboard command")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise ClipboardError(f"{argv[0]} unavailable: {exc}") from exc
    _, stderr = await proc.communicate(text.encode("utf-8"))
    if proc.returncode != 0:
        detail = (stderr or b"").decode("utf-8", "replace").strip()
        raise ClipboardError(f"{argv[0]} exited {proc.returncode}: {detail}")


class Clipboard:
    """Copies text to the clipboard, falling back to the primary selection."""

    def __init__(self, command: str, fallback_command: str | None = None):
        self.command = command
        self.fallback_command = fallback_command

    async def copy(self, text: str) -> bool:
        try:
            await _pipe_to_command(self.command, text)
            return True
        except ClipboardError as exc:
            logger.warning("clipboard copy failed, trying fallback: %s", exc)
        if not self.fallback_command:
            return False
        try:
            await _pipe_to_command(self.fallback_command, text)
            return True
        except ClipboardError as exc:
            logger.error("fallback copy failed: %s", exc)
            return False
