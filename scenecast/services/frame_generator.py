"""Frame Asset Generator - renders one still image per scene."""

import io
from typing import Any, Optional

from PIL import Image, ImageDraw, ImageFilter, ImageFont

from scenecast.core.config import Settings
from scenecast.core.errors import AssetGenerationError
from scenecast.models.schemas import Scene, VisualTreatment

# Checked in order; first match wins.
TREATMENT_KEYWORDS: list[tuple[VisualTreatment, tuple[str, ...]]] = [
    (VisualTreatment.FEAR, ("fear", "worry", "danger")),
    (VisualTreatment.SUCCESS, ("success", "win", "rich")),
    (VisualTreatment.WARNING, ("debt", "problem")),
    (VisualTreatment.CONFIDENT, ("confident", "hero")),
]

GRADIENTS: dict[VisualTreatment, tuple[tuple[int, int, int], tuple[int, int, int]]] = {
    VisualTreatment.FEAR: ((0, 0, 0), (67, 67, 67)),
    VisualTreatment.SUCCESS: ((19, 78, 74), (6, 95, 70)),
    VisualTreatment.WARNING: ((69, 10, 10), (153, 27, 27)),
    VisualTreatment.CONFIDENT: ((30, 58, 138), (30, 64, 175)),
    VisualTreatment.NEUTRAL: ((15, 23, 42), (30, 41, 59)),
}

GOLD = (255, 215, 0)
BOLD_FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "C:/Windows/Fonts/impact.ttf",
]
ITALIC_FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Oblique.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Italic.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "C:/Windows/Fonts/verdanai.ttf",
]

MAIN_TEXT_LIMIT = 60
SUB_TEXT_LIMIT = 100


def detect_treatment(visual_hint: Any) -> VisualTreatment:
    """
    Pick a visual treatment from a free-text hint.

    Anything that is not a usable string maps to NEUTRAL.
    """
    if not isinstance(visual_hint, str):
        return VisualTreatment.NEUTRAL
    hint = visual_hint.lower()
    for treatment, keywords in TREATMENT_KEYWORDS:
        if any(keyword in hint for keyword in keywords):
            return treatment
    return VisualTreatment.NEUTRAL


def split_headline(narration_text: str) -> tuple[str, str]:
    """Split narration into an upper-cased headline and a sub-line (first two sentences)."""
    sentences = narration_text.split(".")
    main_text = sentences[0].strip()[:MAIN_TEXT_LIMIT].upper()
    sub_text = sentences[1].strip()[:SUB_TEXT_LIMIT] if len(sentences) > 1 else ""
    return main_text, sub_text


def _load_font(paths: list[str], size: int) -> ImageFont.ImageFont:
    for path in paths:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default()


class FrameAssetGenerator:
    """Renders a text/graphic composite PNG for each scene.

    Rendering is a pure function of the scene, so calls for different scenes
    can run concurrently.
    """

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize frame generator.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.width = settings.video_width
        self.height = settings.video_height
        scale = self.height / 1080
        self.headline_font = _load_font(BOLD_FONT_PATHS, max(12, int(110 * scale)))
        self.subline_font = _load_font(ITALIC_FONT_PATHS, max(10, int(42 * scale)))
        self.watermark_font = _load_font(BOLD_FONT_PATHS, max(8, int(24 * scale)))

    def render(self, scene: Scene, total_scenes: Optional[int] = None) -> bytes:
        """
        Render a scene to PNG bytes.

        Args:
            scene: Scene to render
            total_scenes: Scene count, used to size the progress bar

        Returns:
            PNG-encoded image bytes

        Raises:
            AssetGenerationError: Only if even the neutral fallback frame fails
        """
        try:
            treatment = detect_treatment(scene.visual_hint)
            image = self._compose(scene, treatment, total_scenes)
        except Exception as e:
            self.logger.warning(f"Frame for scene {scene.index} failed ({e}), using neutral fallback")
            try:
                image = self._gradient(GRADIENTS[VisualTreatment.NEUTRAL])
            except Exception as fallback_error:
                raise AssetGenerationError(
                    f"Could not render frame for scene {scene.index}: {fallback_error}"
                ) from fallback_error

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        self.logger.debug(f"Rendered frame for scene {scene.index} ({self.width}x{self.height})")
        return buffer.getvalue()

    def _gradient(self, stops: tuple[tuple[int, int, int], tuple[int, int, int]]) -> Image.Image:
        """Diagonal two-stop gradient, top-left to bottom-right."""
        start, end = stops
        # Small ramp stretched by Pillow instead of per-pixel work at full size
        ramp_w, ramp_h = 64, 36
        ramp = Image.new("L", (ramp_w, ramp_h))
        ramp.putdata(
            [int(255 * (x / (ramp_w - 1) + y / (ramp_h - 1)) / 2) for y in range(ramp_h) for x in range(ramp_w)]
        )
        ramp = ramp.resize((self.width, self.height), Image.Resampling.BILINEAR)
        return Image.composite(Image.new("RGB", ramp.size, end), Image.new("RGB", ramp.size, start), ramp)

    def _fit_lines(self, draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont, max_width: int) -> list[str]:
        """Greedy word wrap against a pixel width."""
        lines: list[str] = []
        current = ""
        for word in text.split():
            candidate = f"{current} {word}".strip()
            if current and draw.textlength(candidate, font=font) > max_width:
                lines.append(current)
                current = word
            else:
                current = candidate
        if current:
            lines.append(current)
        return lines

    def _draw_centered(
        self,
        draw: ImageDraw.ImageDraw,
        lines: list[str],
        font: ImageFont.ImageFont,
        center_y: int,
        fill: tuple,
    ) -> None:
        line_height = int(font.size * 1.2) if hasattr(font, "size") else 14
        top = center_y - (line_height * len(lines)) // 2
        for i, line in enumerate(lines):
            line_width = draw.textlength(line, font=font)
            draw.text(((self.width - line_width) // 2, top + i * line_height), line, fill=fill, font=font)

    def _compose(self, scene: Scene, treatment: VisualTreatment, total_scenes: Optional[int]) -> Image.Image:
        image = self._gradient(GRADIENTS[treatment]).convert("RGBA")
        margin = int(50 * self.height / 1080)
        max_text_width = self.width - 4 * margin
        headline_y = int(self.height * 0.45)
        main_text, sub_text = split_headline(scene.narration_text or scene.description)

        # Glow: blurred copy of the headline underneath the sharp one
        glow = Image.new("RGBA", image.size, (0, 0, 0, 0))
        glow_draw = ImageDraw.Draw(glow)
        headline_lines = self._fit_lines(glow_draw, main_text, self.headline_font, max_text_width)
        self._draw_centered(glow_draw, headline_lines, self.headline_font, headline_y, GOLD + (200,))
        image = Image.alpha_composite(image, glow.filter(ImageFilter.GaussianBlur(radius=5)))

        overlay = Image.new("RGBA", image.size, (0, 0, 0, 0))
        draw = ImageDraw.Draw(overlay)
        draw.rectangle(
            [(margin, margin), (self.width - margin, self.height - margin)],
            outline=(255, 255, 255, 26),
            width=2,
        )
        self._draw_centered(draw, headline_lines, self.headline_font, headline_y, GOLD + (255,))

        if sub_text:
            sub_lines = self._fit_lines(draw, sub_text, self.subline_font, max_text_width)
            self._draw_centered(draw, sub_lines, self.subline_font, int(self.height * 0.62), (255, 255, 255, 230))

        if self.settings.frame_watermark_text:
            draw.text(
                (2 * margin, self.height - 2 * margin),
                self.settings.frame_watermark_text,
                fill=(255, 255, 255, 77),
                font=self.watermark_font,
            )

        if total_scenes and total_scenes > 0:
            fraction = (scene.index + 1) / total_scenes
        else:
            fraction = (scene.index + 1) / 10
        bar_height = max(4, int(10 * self.height / 1080))
        draw.rectangle(
            [(0, self.height - bar_height), (int(self.width * min(fraction, 1.0)), self.height)],
            fill=GOLD + (153,),
        )

        return Image.alpha_composite(image, overlay).convert("RGB")
