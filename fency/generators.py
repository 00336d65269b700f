import io
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image

WIDTH = 200
HEIGHT = 80
DIGIT_COUNT = 4
NOISE_LINES = 10
NOISE_DOTS = 100

BACKGROUND = (240, 240, 240, 255)
LINE_COLOR = (200, 200, 200, 255)
DIGIT_COLOR = (50, 50, 50, 255)
DOT_COLOR = (180, 180, 180, 255)

Segment = Tuple[int, int, int, int]

# Seven-segment glyphs in a local frame centered on (0, 0), x in [-10, 10], y in [-20, 20]
_TOP = (-10, -20, 10, -20)
_TOP_REVERSED = (10, -20, -10, -20)
_BOTTOM = (10, 20, -10, 20)
_MIDDLE = (-10, 0, 10, 0)
_FULL_RIGHT = (10, -20, 10, 20)
_UPPER_LEFT = (-10, -20, -10, 0)

DIGIT_SEGMENTS: Dict[str, List[Segment]] = {
    "0": [_TOP, _FULL_RIGHT, _BOTTOM, (-10, 20, -10, -20)],
    "1": [(0, -20, 0, 20)],
    "2": [_TOP, (10, -20, 10, 0), (10, 0, -10, 0), (-10, 0, -10, 20), (-10, 20, 10, 20)],
    "3": [_TOP, _FULL_RIGHT, _BOTTOM, (-5, 0, 10, 0)],
    "4": [_UPPER_LEFT, _MIDDLE, _FULL_RIGHT],
    "5": [_TOP_REVERSED, _UPPER_LEFT, _MIDDLE, (10, 0, 10, 20), _BOTTOM],
    "6": [_TOP_REVERSED, (-10, -20, -10, 20), (-10, 20, 10, 20), (10, 20, 10, 0), (10, 0, -10, 0)],
    "7": [_TOP, _FULL_RIGHT],
    "8": [_TOP, _FULL_RIGHT, _BOTTOM, (-10, 20, -10, -20), _MIDDLE],
    "9": [(10, 20, 10, -20), _TOP_REVERSED, _UPPER_LEFT, _MIDDLE],
}


class GenerationError(Exception):
    """Random source or PNG encoder failed; the challenge cannot be issued."""


@dataclass(frozen=True)
class Challenge:
    image: bytes
    answer: str


def rand_below(n: int) -> int:
    try:
        return secrets.randbelow(n)
    except (OSError, NotImplementedError) as e:
        raise GenerationError(f"random source failed: {e}") from e


def random_answer(length: int = DIGIT_COUNT) -> str:
    return "".join(str(rand_below(10)) for _ in range(length))


def draw_line(px, width: int, height: int, x1: int, y1: int, x2: int, y2: int, color) -> None:
    """Bresenham line with a two-pixel stroke (east and south neighbours).

    Points outside the canvas are skipped.
    """
    dx = abs(x2 - x1)
    dy = abs(y2 - y1)
    sx = 1 if x1 < x2 else -1
    sy = 1 if y1 < y2 else -1
    err = dx - dy

    while True:
        if 0 <= x1 < width and 0 <= y1 < height:
            px[x1, y1] = color
            if x1 + 1 < width:
                px[x1 + 1, y1] = color
            if y1 + 1 < height:
                px[x1, y1 + 1] = color

        if x1 == x2 and y1 == y2:
            break

        e2 = 2 * err
        if e2 > -dy:
            err -= dy
            x1 += sx
        if e2 < dx:
            err += dx
            y1 += sy


def draw_digit(px, width: int, height: int, digit: str, cx: int, cy: int, color=DIGIT_COLOR) -> None:
    for x1, y1, x2, y2 in DIGIT_SEGMENTS[digit]:
        draw_line(px, width, height, cx + x1, cy + y1, cx + x2, cy + y2, color)


def add_noise_lines(px, width: int, height: int, lines: int = NOISE_LINES) -> None:
    for _ in range(lines):
        x1, y1 = rand_below(width), rand_below(height)
        x2, y2 = rand_below(width), rand_below(height)
        draw_line(px, width, height, x1, y1, x2, y2, LINE_COLOR)


def add_noise_dots(px, width: int, height: int, dots: int = NOISE_DOTS) -> None:
    for _ in range(dots):
        px[rand_below(width), rand_below(height)] = DOT_COLOR


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    try:
        img.save(buf, format="PNG")
    except (OSError, ValueError) as e:
        raise GenerationError(f"failed to encode image: {e}") from e
    return buf.getvalue()


def render(answer: str, width: int = WIDTH, height: int = HEIGHT) -> Image.Image:
    img = Image.new("RGBA", (width, height), BACKGROUND)
    px = img.load()

    add_noise_lines(px, width, height)

    step = width // len(answer)
    for i, digit in enumerate(answer):
        draw_digit(px, width, height, digit, i * step + step // 4, height // 2)

    add_noise_dots(px, width, height)
    return img


class DigitCaptcha:
    def __init__(self, length: int = DIGIT_COUNT, width: int = WIDTH, height: int = HEIGHT):
        self.length = length
        self.width = width
        self.height = height

    def generate(self) -> Challenge:
        answer = random_answer(self.length)
        img = render(answer, self.width, self.height)
        return Challenge(image=encode_png(img), answer=answer)


class AssetCaptcha:
    """Serves pre-rendered images from ``<assets_dir>/captcha/NNNN.png``.

    The answer is the file stem. Falls back to ``fallback`` when no usable
    file is present.
    """

    def __init__(self, assets_dir: str, fallback: Optional[DigitCaptcha] = None):
        self.assets_dir = Path(assets_dir)
        self.fallback = fallback or DigitCaptcha()

    def _candidates(self) -> List[Path]:
        captcha_dir = self.assets_dir / "captcha"
        if not captcha_dir.is_dir():
            return []
        return sorted(
            p for p in captcha_dir.glob("*.png")
            if len(p.stem) == DIGIT_COUNT and p.stem.isdigit() and p.stem.isascii()
        )

    def generate(self) -> Challenge:
        files = self._candidates()
        if not files:
            return self.fallback.generate()
        selected = files[rand_below(len(files))]
        try:
            data = selected.read_bytes()
        except OSError as e:
            raise GenerationError(f"failed to read captcha file {selected}: {e}") from e
        return Challenge(image=data, answer=selected.stem)


def write_samples(out_dir: str, count: int, generator: Optional[DigitCaptcha] = None) -> List[str]:
    """Render ``count`` images with distinct answers into ``<out_dir>/captcha``.

    Files are named after their answers; a drawn answer already written is redrawn.
    """
    if count > 10 ** DIGIT_COUNT:
        raise ValueError(f"at most {10 ** DIGIT_COUNT} distinct captchas exist, asked for {count}")
    generator = generator or DigitCaptcha()
    captcha_dir = os.path.join(out_dir, "captcha")
    os.makedirs(captcha_dir, exist_ok=True)
    written = []
    seen = set()
    while len(written) < count:
        c = generator.generate()
        if c.answer in seen:
            continue
        seen.add(c.answer)
        path = os.path.join(captcha_dir, f"{c.answer}.png")
        with open(path, "wb") as f:
            f.write(c.image)
        written.append(path)
    return written
