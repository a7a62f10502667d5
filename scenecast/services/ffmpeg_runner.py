"""FFmpeg Runner - runs the encoder as a cancellable, monitored child process."""

import shlex
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import IO, Any, Optional

from scenecast.core.config import Settings
from scenecast.core.errors import EncodeCancelledError, EncodeError, EncodeTimeoutError
from scenecast.utils.cancellation import CancellationToken

DIAGNOSTIC_LINES = 200


class FFmpegRunner:
    """Spawns encoder processes and always reaps them.

    ``run`` blocks until the child exits, is cancelled through a
    CancellationToken, or passes its deadline. In the last two cases the child
    is terminated (then killed after a grace period) before the typed error is
    raised.
    """

    POLL_INTERVAL_SECONDS = 0.1
    TERMINATE_GRACE_SECONDS = 5.0

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize the runner.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger

    def run(
        self,
        command: list[str],
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        cwd: Optional[Path] = None,
    ) -> str:
        """
        Run a command to completion.

        Args:
            command: Executable and arguments
            cancel_token: Token checked while the process runs
            timeout: Seconds before the process is terminated (None for no limit)
            cwd: Working directory for the process

        Returns:
            Captured diagnostic output (tail of stderr)

        Raises:
            EncodeError: Process could not start or exited nonzero
            EncodeTimeoutError: Deadline passed
            EncodeCancelledError: Token was cancelled
        """
        self.logger.debug(f"Running encoder: {shlex.join(command)}")
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            raise EncodeError(f"Encoder executable not found: {command[0]}") from e
        except OSError as e:
            raise EncodeError(f"Could not start encoder: {e}") from e

        stderr_lines: deque[str] = deque(maxlen=DIAGNOSTIC_LINES)
        reader = threading.Thread(target=self._drain, args=(process.stderr, stderr_lines), daemon=True)
        reader.start()

        start = time.monotonic()
        deadline = start + timeout if timeout else None
        try:
            while True:
                try:
                    return_code = process.wait(timeout=self.POLL_INTERVAL_SECONDS)
                    break
                except subprocess.TimeoutExpired:
                    pass

                if cancel_token is not None and cancel_token.cancelled:
                    self._stop(process)
                    reader.join(timeout=1.0)
                    raise EncodeCancelledError(
                        f"Encoding cancelled: {cancel_token.reason}",
                        process.returncode,
                        "\n".join(stderr_lines),
                    )
                if deadline is not None and time.monotonic() >= deadline:
                    self._stop(process)
                    reader.join(timeout=1.0)
                    raise EncodeTimeoutError(
                        f"Encoding timed out after {timeout:.1f}s",
                        process.returncode,
                        "\n".join(stderr_lines),
                    )
        finally:
            if process.poll() is None:
                self._stop(process)

        reader.join(timeout=5.0)
        diagnostics = "\n".join(stderr_lines)
        elapsed = time.monotonic() - start

        if return_code != 0:
            last_line = stderr_lines[-1] if stderr_lines else "no diagnostic output"
            raise EncodeError(
                f"Encoder exited with status {return_code}: {last_line}",
                return_code,
                diagnostics,
            )

        self.logger.debug(f"Encoder finished in {elapsed:.2f}s")
        return diagnostics

    def _stop(self, process: subprocess.Popen) -> None:
        """Terminate, then kill if the process ignores SIGTERM."""
        process.terminate()
        try:
            process.wait(timeout=self.TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Encoder (pid {process.pid}) ignored terminate; killing")
            process.kill()
            process.wait()

    @staticmethod
    def _drain(stream: Optional[IO[bytes]], lines: deque) -> None:
        if stream is None:
            return
        with stream:
            for raw in iter(stream.readline, b""):
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    lines.append(line)

    def probe_duration(self, media_path: Path) -> Optional[float]:
        """
        Measure a media file's duration with ffprobe.

        Best effort: returns None (and logs) when probing is not possible.
        """
        command = [
            self.settings.ffprobe_binary,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(media_path),
        ]
        try:
            result = subprocess.run(command, capture_output=True, text=True, timeout=30, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"Could not probe duration of {media_path.name}: {e}")
            return None

        if result.returncode != 0:
            self.logger.warning(f"ffprobe failed for {media_path.name}: {result.stderr.strip()[:200]}")
            return None
        try:
            return float(result.stdout.strip())
        except ValueError:
            return None

    def is_available(self) -> bool:
        """Check that the encoder binary can be executed."""
        try:
            result = subprocess.run(
                [self.settings.ffmpeg_binary, "-version"], capture_output=True, timeout=5, check=False
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return result.returncode == 0
