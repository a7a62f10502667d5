"""Render Graph Assembler - turns frames and narration into a single encoded MP4."""

from pathlib import Path
from typing import Any, Optional

from scenecast.core.config import Settings
from scenecast.core.errors import EncodeError
from scenecast.models.schemas import AssemblerState, EncodeResult, FrameAsset, SequenceEntry
from scenecast.services.ffmpeg_runner import FFmpegRunner
from scenecast.utils.cancellation import CancellationToken

CONCAT_FILE_NAME = "frames.ffconcat"


def escape_concat_path(path: Path) -> str:
    """Quote a path for an ffconcat ``file`` directive."""
    return path.resolve().as_posix().replace("'", "'\\''")


def escape_filter_path(path: Path) -> str:
    """Escape a path used as a filter option value inside a filter graph."""
    escaped = path.as_posix().replace("\\", "\\\\").replace(":", "\\:")
    for char in "',;[]":
        escaped = escaped.replace(char, f"\\{char}")
    return escaped


class RenderGraphAssembler:
    """Builds the image sequence, audio inputs and filter graph, then runs the encoder.

    One assembly moves PREPARED -> IMAGES_SEQUENCED -> AUDIO_ATTACHED ->
    FILTER_GRAPH_BUILT -> ENCODING -> DONE, or ends in ENCODE_FAILED. An
    instance runs one assembly at a time; ``state`` reflects the latest one.
    """

    def __init__(self, settings: Settings, logger: Any, runner: Optional[FFmpegRunner] = None):
        """
        Initialize assembler.

        Args:
            settings: Application settings
            logger: Logger instance
            runner: Encoder runner (built from settings when omitted)
        """
        self.settings = settings
        self.logger = logger
        self.runner = runner or FFmpegRunner(settings, logger)
        self.state = AssemblerState.PREPARED

    def _transition(self, state: AssemblerState) -> None:
        self.logger.debug(f"Assembler: {self.state.value} -> {state.value}")
        self.state = state

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @staticmethod
    def build_sequence_entries(frames: list[FrameAsset]) -> list[SequenceEntry]:
        """
        Build the ordered image sequence.

        Each frame is listed with its hold duration; the last frame is listed
        once more without a duration so the demuxer holds it for its full time.

        Raises:
            EncodeError: If there are no frames
        """
        if not frames:
            raise EncodeError("No frames to sequence")
        ordered = sorted(frames, key=lambda frame: frame.scene_index)
        entries = [SequenceEntry(path=frame.path, duration_seconds=frame.duration_seconds) for frame in ordered]
        entries.append(SequenceEntry(path=ordered[-1].path))
        return entries

    @staticmethod
    def render_concat_file(entries: list[SequenceEntry]) -> str:
        lines = ["ffconcat version 1.0"]
        for entry in entries:
            lines.append(f"file '{escape_concat_path(entry.path)}'")
            if entry.duration_seconds is not None:
                lines.append(f"duration {entry.duration_seconds:.3f}")
        return "\n".join(lines) + "\n"

    def find_background_music(self) -> Optional[Path]:
        """Return the background bed if it exists on disk."""
        if not self.settings.background_music_file:
            return None
        path = Path(self.settings.assets_dir) / self.settings.background_music_file
        return path if path.is_file() else None

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def build_filter_graph(self, has_background: bool, captions_path: Optional[Path] = None) -> str:
        """
        Build the filter graph.

        Input 0 is the image sequence, input 1 the narration, input 2 the
        optional looped background bed. Outputs are labelled [v_final] and
        [a_final].
        """
        s = self.settings
        width, height, fps = s.video_width, s.video_height, s.video_fps

        # Resample to the output rate first so zoompan emits one frame per input frame;
        # pzoom carries the previous frame's zoom, so the increment accumulates.
        zoom = (
            f"[0:v]fps={fps},"
            f"scale={width}:{height}:force_original_aspect_ratio=increase,crop={width}:{height},setsar=1,"
            f"zoompan=z='min(pzoom+{s.zoom_increment},{s.max_zoom})':d=1:"
            f"x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':s={width}x{height}:fps={fps}"
        )
        if captions_path is not None:
            video = (
                f"{zoom},vignette=angle={s.vignette_angle}[v_vignette];"
                f"[v_vignette]ass=filename={escape_filter_path(captions_path)}[v_final]"
            )
        else:
            video = f"{zoom},vignette=angle={s.vignette_angle}[v_final]"

        if has_background:
            audio = (
                "[1:a]volume=1.0[a_voice];"
                f"[2:a]volume={s.background_music_volume}[a_bed];"
                "[a_voice][a_bed]amix=inputs=2:duration=first:dropout_transition=0[a_final]"
            )
        else:
            audio = "[1:a]volume=1.0[a_final]"

        return f"{video};{audio}"

    def build_command(
        self,
        concat_path: Path,
        narration_path: Path,
        output_path: Path,
        filter_graph: str,
        background_path: Optional[Path] = None,
    ) -> list[str]:
        s = self.settings
        command = [
            s.ffmpeg_binary,
            "-y",
            "-hide_banner",
            "-nostats",
            "-loglevel",
            "warning",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(concat_path),
            "-i",
            str(narration_path),
        ]
        if background_path is not None:
            command += ["-stream_loop", "-1", "-i", str(background_path)]

        command += [
            "-filter_complex",
            filter_graph,
            "-map",
            "[v_final]",
            "-map",
            "[a_final]",
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            "-crf",
            str(s.video_crf),
            "-preset",
            s.video_preset,
            "-r",
            str(s.video_fps),
            "-c:a",
            "aac",
            "-b:a",
            s.audio_bitrate,
            "-shortest",
            "-movflags",
            "+faststart",
            str(output_path),
        ]
        return command

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(
        self,
        frames: list[FrameAsset],
        narration_path: Path,
        output_path: Path,
        captions_path: Optional[Path] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EncodeResult:
        """
        Encode frames and narration into output_path.

        The output stops at the shorter of the image sequence and the
        narration. A partial output file is removed on failure.

        Args:
            frames: One rendered frame per scene
            narration_path: Narration audio file
            output_path: Target MP4 path
            captions_path: Optional ASS track to burn in
            cancel_token: Token that aborts a running encode

        Returns:
            EncodeResult with sequence, narration and measured durations

        Raises:
            EncodeError: On missing inputs or encoder failure (including
                timeout and cancellation subclasses)
        """
        self.state = AssemblerState.PREPARED
        output_path = Path(output_path)
        background_path = None
        use_captions = False

        try:
            missing = [str(frame.path) for frame in frames if not Path(frame.path).is_file()]
            if missing:
                raise EncodeError(f"Frame files missing: {', '.join(missing)}")
            entries = self.build_sequence_entries(frames)
            concat_path = output_path.parent / CONCAT_FILE_NAME
            concat_path.parent.mkdir(parents=True, exist_ok=True)
            concat_path.write_text(self.render_concat_file(entries), encoding="utf-8")
            sequence_seconds = sum(frame.duration_seconds for frame in frames)
            self._transition(AssemblerState.IMAGES_SEQUENCED)

            if not narration_path.is_file() or narration_path.stat().st_size == 0:
                raise EncodeError(f"Narration audio missing or empty: {narration_path}")
            background_path = self.find_background_music()
            if background_path:
                self.logger.info(f"Mixing background bed {background_path.name}")
            else:
                self.logger.info("No background bed found, narration only")
            self._transition(AssemblerState.AUDIO_ATTACHED)

            # The encoder runs inside the job directory so the caption track can be
            # referenced by bare name; every other path is absolute.
            work_dir = output_path.parent.resolve()
            use_captions = bool(captions_path and self.settings.burn_captions and captions_path.is_file())
            captions_ref = None
            if use_captions:
                resolved = captions_path.resolve()
                captions_ref = Path(resolved.name) if resolved.parent == work_dir else resolved
            filter_graph = self.build_filter_graph(background_path is not None, captions_ref)
            command = self.build_command(
                concat_path.resolve(),
                narration_path.resolve(),
                output_path.resolve(),
                filter_graph,
                background_path.resolve() if background_path else None,
            )
            self._transition(AssemblerState.FILTER_GRAPH_BUILT)

            self._transition(AssemblerState.ENCODING)
            self.logger.info(f"Encoding {len(frames)} frames ({sequence_seconds:.1f}s) to {output_path.name}")
            timeout = self.settings.encode_timeout_seconds or None
            self.runner.run(command, cancel_token=cancel_token, timeout=timeout, cwd=work_dir)

            if not output_path.is_file() or output_path.stat().st_size == 0:
                raise EncodeError("Encoder reported success but produced no output")
        except EncodeError as e:
            self._fail(output_path)
            self.logger.error(f"❌ Encode failed: {e.message}")
            if e.diagnostics:
                self.logger.debug(f"Encoder diagnostics:\n{e.diagnostics}")
            raise
        except OSError as e:
            self._fail(output_path)
            raise EncodeError(f"Could not prepare encoder inputs: {e}") from e

        self._transition(AssemblerState.DONE)
        result = EncodeResult(
            output_path=output_path,
            video_sequence_seconds=sequence_seconds,
            audio_seconds=self.runner.probe_duration(narration_path),
            encoded_seconds=self.runner.probe_duration(output_path),
            has_background_music=background_path is not None,
            has_captions=use_captions,
        )
        self.logger.info(
            f"✅ Encoded {output_path.name}: sequence={sequence_seconds:.2f}s, "
            f"narration={result.audio_seconds}, output={result.encoded_seconds} "
            f"(expected {result.expected_seconds:.2f}s)"
        )
        if result.encoded_seconds is not None and abs(result.encoded_seconds - result.expected_seconds) > 1.0:
            self.logger.warning(
                f"Encoded length {result.encoded_seconds:.2f}s differs from expected {result.expected_seconds:.2f}s"
            )
        return result

    def _fail(self, output_path: Path) -> None:
        self.state = AssemblerState.ENCODE_FAILED
        try:
            output_path.unlink(missing_ok=True)
        except OSError as e:
            self.logger.warning(f"Could not remove partial output {output_path}: {e}")
