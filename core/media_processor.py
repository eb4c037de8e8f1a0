import asyncio
import logging
import re
from collections import deque
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional

import static_ffmpeg

from config import AUDIO_CODEC, INPUT_FORMAT, OUTPUT_MOVFLAGS
from core.errors import WorkerError
from schemas.models import WorkerEvent, WorkerEventKind

logger = logging.getLogger(__name__)

_TIMEMARK_RE = re.compile(r"^(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)$")
STDERR_TAIL_LINES = 20


def ensure_ffmpeg() -> None:
    """Adds the static ffmpeg binaries to PATH unless ffmpeg is already there."""
    static_ffmpeg.add_paths(weak=True)


def seconds_to_time(seconds: float) -> str:
    """Formats a seek offset as HH:MM:SS.000 (milliseconds are always zero)."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.000"


def parse_timemark(timemark: str) -> Optional[float]:
    """Parses an ffmpeg H:MM:SS[.fff] timemark back to seconds."""
    match = _TIMEMARK_RE.match(timemark.strip())
    if not match:
        return None
    h, m, s = match.groups()
    return int(h) * 3600 + int(m) * 60 + float(s)


def build_ffmpeg_args(output_path: Path, start_offset: float, duration: float) -> List[str]:
    return [
        "ffmpeg",
        "-hide_banner",
        "-nostats",
        "-loglevel", "error",
        "-progress", "pipe:1",   # key=value progress lines on stdout
        "-y",                    # Overwrite output
        "-f", INPUT_FORMAT,
        "-i", "pipe:0",
        "-ss", seconds_to_time(start_offset),
        "-t", str(duration),
        "-c:v", "copy",          # Video untouched
        "-c:a", AUDIO_CODEC,
        "-movflags", OUTPUT_MOVFLAGS,
        "-f", "mp4",
        str(output_path),
    ]


class TranscodeWorker:
    """
    One ffmpeg child process fed from an async byte iterator.
    Reports start/progress/error/end through on_event; exactly one of
    error or end is emitted per run.
    """

    def __init__(
        self,
        output_path: Path,
        start_offset: float,
        duration: float,
        on_event: Callable[[WorkerEvent], None],
    ):
        self.output_path = output_path
        self.start_offset = start_offset
        self.duration = duration
        self._on_event = on_event
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stop_requested = False
        self._stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    def stop(self) -> None:
        """Kills ffmpeg. Safe to call repeatedly, before launch and after exit."""
        self._stop_requested = True
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            logger.info(f"Killing ffmpeg (pid={process.pid})")
            process.kill()
        except ProcessLookupError:
            pass

    async def run(self, chunks: AsyncIterator[bytes]) -> None:
        args = build_ffmpeg_args(self.output_path, self.start_offset, self.duration)
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._emit(WorkerEvent(WorkerEventKind.ERROR, error=WorkerError(f"Failed to launch ffmpeg: {e}")))
            return

        command_line = " ".join(args)
        logger.info(f"FFmpeg start: {command_line}")
        self._emit(WorkerEvent(WorkerEventKind.START, command_line=command_line))

        if self._stop_requested:
            self.stop()

        feeder = asyncio.create_task(self._feed(chunks))
        stderr_reader = asyncio.create_task(self._collect_stderr())
        try:
            await self._read_progress()
            returncode = await self._process.wait()
            await stderr_reader
        finally:
            feeder.cancel()
            stderr_reader.cancel()
            await asyncio.gather(feeder, stderr_reader, return_exceptions=True)

        if returncode == 0:
            self._emit(WorkerEvent(WorkerEventKind.END))
        else:
            detail = " | ".join(self._stderr_tail)
            self._emit(WorkerEvent(
                WorkerEventKind.ERROR,
                error=WorkerError(f"ffmpeg exited with code {returncode}: {detail}"),
            ))

    def _emit(self, event: WorkerEvent) -> None:
        try:
            self._on_event(event)
        except Exception as e:
            logger.error(f"Error in worker event callback: {e}")

    async def _feed(self, chunks: AsyncIterator[bytes]) -> None:
        stdin = self._process.stdin
        try:
            async for chunk in chunks:
                stdin.write(chunk)
                await stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            # ffmpeg stops reading once -t is satisfied or it was killed
            pass
        except Exception as e:
            logger.warning(f"Source stream ended early for {self.output_path.name}: {e}")
        finally:
            try:
                stdin.close()
            except (BrokenPipeError, ConnectionResetError, RuntimeError):
                pass

    async def _read_progress(self) -> None:
        stdout = self._process.stdout
        while True:
            raw = await stdout.readline()
            if not raw:
                break
            key, _, value = raw.decode(errors="replace").strip().partition("=")
            if key == "out_time" and parse_timemark(value) is not None:
                self._emit(WorkerEvent(WorkerEventKind.PROGRESS, timemark=value))

    async def _collect_stderr(self) -> None:
        stderr = self._process.stderr
        while True:
            raw = await stderr.readline()
            if not raw:
                break
            line = raw.decode(errors="replace").strip()
            if line:
                self._stderr_tail.append(line)
