"""
Transcode backends.

The pipeline only sees TranscodeExecutor (is_available + run). New backends
(hardware encoders, remote services) register in EXECUTORS.
"""
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from .errors import ImproperlyConfigured, TranscodeError
from .utils import tail

logger = logging.getLogger(__name__)

DIAGNOSTIC_LIMIT = 4000


class TranscodeExecutor(ABC):
    name: str = "abstract"

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend can run here; checked once at startup."""

    @abstractmethod
    def run(self, source_reference: str, working_directory: Path) -> None:
        """
        Transform `source_reference` into artifacts written to `working_directory`.
        Blocks until done; raises TranscodeError on any failure.
        """


class SubprocessExecutor(TranscodeExecutor):
    """Runs an external command with the workspace as its working directory."""

    program: str = ""

    def __init__(self, timeout: float | None = None, diagnostic_limit: int = DIAGNOSTIC_LIMIT):
        self.timeout = timeout or None
        self.diagnostic_limit = diagnostic_limit

    def is_available(self) -> bool:
        return shutil.which(self.program) is not None

    @abstractmethod
    def build_command(self, source_reference: str) -> list[str]:
        ...

    def run(self, source_reference: str, working_directory: Path) -> None:
        cmd = self.build_command(source_reference)
        logger.debug(f"running {self.name} in {working_directory}")
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(working_directory),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            # run() has already killed the child
            raise TranscodeError(
                f"{self.name} exceeded {self.timeout}s deadline",
                diagnostics=self._diagnostics(e.stderr),
            ) from e
        except (OSError, ValueError) as e:
            # ValueError: arguments the OS rejects, e.g. an embedded NUL
            raise TranscodeError(f"cannot start {self.name}: {e}") from e

        if proc.returncode != 0:
            raise TranscodeError(
                f"{self.name} exited with status {proc.returncode}",
                diagnostics=self._diagnostics(proc.stderr),
                returncode=proc.returncode,
            )

    def _diagnostics(self, stderr: bytes | str | None) -> str:
        if not stderr:
            return ""
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", errors="ignore")
        return tail(stderr, self.diagnostic_limit)


class FfmpegHlsExecutor(SubprocessExecutor):
    """720p H.264/AAC VOD HLS: master.m3u8 plus segment_NNN.ts."""

    name = "ffmpeg"
    program = "ffmpeg"

    playlist_name = "master.m3u8"
    segment_pattern = "segment_%03d.ts"
    segment_seconds = 4

    def build_command(self, source_reference: str) -> list[str]:
        return [
            self.program,
            "-nostdin",
            "-y",
            "-i", source_reference,
            "-vf", "scale=-2:720",
            "-c:v", "libx264",
            "-preset", "veryfast",
            "-tune", "zerolatency",
            "-crf", "23",
            "-profile:v", "high",
            "-level", "4.0",
            "-x264-params", "keyint=48:min-keyint=48:scenecut=0:open_gop=0",
            "-c:a", "aac",
            "-ar", "48000",
            "-b:a", "128k",
            "-ac", "2",
            "-f", "hls",
            "-hls_time", str(self.segment_seconds),
            "-hls_flags", "independent_segments",
            "-hls_segment_filename", self.segment_pattern,
            "-hls_playlist_type", "vod",
            self.playlist_name,
        ]


EXECUTORS: dict[str, type[TranscodeExecutor]] = {
    FfmpegHlsExecutor.name: FfmpegHlsExecutor,
}


def get_executor(name: str, **kwargs) -> TranscodeExecutor:
    try:
        cls = EXECUTORS[name]
    except KeyError:
        raise ImproperlyConfigured(
            f"Unknown transcode backend {name!r}. Available: {sorted(EXECUTORS)}"
        ) from None
    return cls(**kwargs)
