"""Caption Track Builder - word-level captions from character timings, serialized as ASS."""

from pathlib import Path
from typing import Any

from scenecast.core.config import Settings
from scenecast.models.schemas import CaptionEvent, CharacterTimingMap

ASS_STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
    "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
    "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding"
)
# White text, gold karaoke highlight, translucent outline, bottom-centre
ASS_DEFAULT_STYLE = (
    "Style: Default,Impact,70,&H00FFFFFF,&H0000D7FF,&H80000000,&H00000000,"
    "-1,0,0,0,100,100,2,0,1,3,2,2,10,10,100,1"
)
ASS_EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"


def format_ass_timestamp(seconds: float) -> str:
    """Format seconds as H:MM:SS.cc (centiseconds, truncated)."""
    total_cs = int(max(0.0, seconds) * 100 + 1e-6)
    hours, rem = divmod(total_cs, 360000)
    minutes, rem = divmod(rem, 6000)
    secs, centis = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{centis:02d}"


def escape_ass_text(text: str) -> str:
    """Neutralise characters ASS treats as override blocks or line breaks."""
    return text.replace("\\", "\\\\").replace("{", "(").replace("}", ")").replace("\n", " ")


class CaptionTrackBuilder:
    """Builds word caption events and renders them into a styled subtitle track."""

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize caption builder.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger

    def build_captions(self, timing_map: CharacterTimingMap) -> list[CaptionEvent]:
        """
        Group character timings into word events.

        Characters are walked left to right. A word is flushed at whitespace or
        at the final character. Its start is the start time of the character
        that followed the previous flush, its end the end time of its last
        non-whitespace character. Events never overlap: a start earlier than
        the previous end is clamped forward, and an end earlier than its start
        is clamped to the start.

        Args:
            timing_map: Validated character timing map

        Returns:
            Time-ordered, non-overlapping caption events
        """
        characters = timing_map.characters
        starts = timing_map.start_times
        ends = timing_map.end_times
        count = len(characters)
        if count == 0:
            return []

        events: list[CaptionEvent] = []
        buffer = ""
        word_start = starts[0]
        last_known_time = starts[0]
        word_end = None

        for i, char in enumerate(characters):
            buffer += char
            if not char.isspace():
                word_end = ends[i]
            last_known_time = max(last_known_time, ends[i])

            if not (char.isspace() or i == count - 1):
                continue

            word = buffer.strip()
            if word:
                start = max(0.0, word_start)
                if events and start < events[-1].end_time:
                    start = events[-1].end_time
                end = word_end if word_end is not None else ends[i]
                end = max(end, start)
                events.append(CaptionEvent(text=word, start_time=start, end_time=end))

            buffer = ""
            word_end = None
            # Next word starts where the next character starts; clamp past the end of the map.
            word_start = starts[i + 1] if i + 1 < len(starts) else last_known_time

        self.logger.debug(f"Built {len(events)} caption events from {count} characters")
        return events

    def serialize(self, events: list[CaptionEvent]) -> str:
        """
        Render caption events as an Advanced SubStation Alpha document.

        Each event carries a karaoke tag sized to its duration in centiseconds.
        """
        header = "\n".join(
            [
                "[Script Info]",
                "ScriptType: v4.00+",
                f"PlayResX: {self.settings.video_width}",
                f"PlayResY: {self.settings.video_height}",
                "",
                "[V4+ Styles]",
                ASS_STYLE_FORMAT,
                ASS_DEFAULT_STYLE,
                "",
                "[Events]",
                ASS_EVENT_FORMAT,
            ]
        )

        lines = []
        previous_end = 0.0
        for event in events:
            start = max(event.start_time, previous_end)
            end = max(event.end_time, start)
            karaoke = int((end - start) * 100)
            lines.append(
                f"Dialogue: 0,{format_ass_timestamp(start)},{format_ass_timestamp(end)},Default,,0,0,0,,"
                f"{{\\k{karaoke}}}{escape_ass_text(event.text)}"
            )
            previous_end = end

        return header + "\n" + "\n".join(lines) + ("\n" if lines else "")

    def write(self, events: list[CaptionEvent], output_path: Path) -> Path:
        """Serialize events to output_path (UTF-8)."""
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.serialize(events), encoding="utf-8")
        self.logger.info(f"Caption track written: {output_path} ({len(events)} words)")
        return output_path
