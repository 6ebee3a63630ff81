"""Local CLI tools (claude, gemini, codex) driven as subprocesses."""

import asyncio
import codecs
import contextlib
import logging
import os

from quorum.models import FailureKind
from quorum.providers.base import ChunkCallback, Connector, ProviderError

logger = logging.getLogger(__name__)

_READ_SIZE = 4096

_RATE_LIMIT_PATTERNS = ("rate limit", "rate-limit", "too many requests", "429", "quota exceeded")
_AUTH_PATTERNS = ("invalid api key", "authentication failed", "unauthorized", "forbidden", "not logged in")


def _classify_exit(stderr: str) -> FailureKind:
    lowered = stderr.lower()
    if any(p in lowered for p in _RATE_LIMIT_PATTERNS):
        return FailureKind.RATE_LIMITED
    if any(p in lowered for p in _AUTH_PATTERNS):
        return FailureKind.PERMISSION_DENIED
    return FailureKind.PROCESS_EXIT_NONZERO


class CliConnector(Connector):
    """Runs a local executable once per call and reads its stdout as the answer."""

    def streams(self) -> bool:
        return True

    def build_command(self, prompt: str, model: str) -> tuple[list[str], str | None]:
        """Return (argv, stdin_text) for one call."""
        d = self.descriptor
        argv = list(d.command)
        if d.model_flag and model and model != "default":
            argv += [d.model_flag, model]
        if d.prompt_mode == "stdin":
            return argv, prompt
        argv.append(prompt)
        return argv, None

    async def _generate(self, prompt: str, model: str, on_chunk: ChunkCallback | None) -> str:
        argv, input_data = self.build_command(prompt, model)
        name = self.name()

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "NO_COLOR": "1"},
            )
        except FileNotFoundError as exc:
            raise ProviderError(name, f"Executable not found: {argv[0]}", FailureKind.NOT_FOUND) from exc
        except PermissionError as exc:
            raise ProviderError(name, f"Permission denied: {argv[0]}", FailureKind.PERMISSION_DENIED) from exc
        except OSError as exc:
            raise ProviderError(name, f"Failed to start {argv[0]}: {exc}", FailureKind.PROCESS_EXIT_NONZERO) from exc

        logger.debug("Started %s (pid %s)", argv[0], proc.pid)
        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            if input_data is not None:
                proc.stdin.write(input_data.encode("utf-8"))
                with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                    await proc.stdin.drain()
                proc.stdin.close()

            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            parts: list[str] = []
            while True:
                data = await proc.stdout.read(_READ_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    parts.append(text)
                    if on_chunk is not None:
                        on_chunk(text)
            tail = decoder.decode(b"", final=True)
            if tail:
                parts.append(tail)
                if on_chunk is not None:
                    on_chunk(tail)

            stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
            returncode = await proc.wait()
        finally:
            if proc.returncode is None:
                logger.debug("Killing %s (pid %s)", argv[0], proc.pid)
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        if returncode != 0:
            first_line = stderr.splitlines()[0][:200] if stderr else "no stderr"
            raise ProviderError(name, f"exit {returncode}: {first_line}", _classify_exit(stderr))

        output = "".join(parts).strip()
        if not output:
            raise ProviderError(name, "No output on stdout", FailureKind.MALFORMED_RESPONSE)
        return output
