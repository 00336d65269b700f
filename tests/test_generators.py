import io

import pytest
from PIL import Image

from fency import generators
from fency.generators import (
    DIGIT_SEGMENTS,
    AssetCaptcha,
    DigitCaptcha,
    GenerationError,
    draw_line,
    render,
    write_samples,
)


def test_generate_answer_and_image():
    for _ in range(20):
        c = DigitCaptcha().generate()
        assert len(c.answer) == 4
        assert all(ch in "0123456789" for ch in c.answer)

        img = Image.open(io.BytesIO(c.image))
        assert img.format == "PNG"
        assert img.size == (200, 80)
        assert img.mode == "RGBA"
        assert not img.info.get("interlace")


def test_zero_answer_renders(monkeypatch):
    monkeypatch.setattr(generators, "add_noise_dots", lambda *a, **kw: None)
    img = render("0000")
    assert img.size == (200, 80)
    # left edge of the first glyph: x = 12 - 10
    assert img.getpixel((2, 40))[:3] == (50, 50, 50)


def test_render_digit_one_is_vertical_stroke(monkeypatch):
    monkeypatch.setattr(generators, "add_noise_lines", lambda *a, **kw: None)
    monkeypatch.setattr(generators, "add_noise_dots", lambda *a, **kw: None)

    img = render("1111")
    for i in range(4):
        cx = i * 50 + 12
        for y in range(20, 61):
            assert img.getpixel((cx, y)) == (50, 50, 50, 255)
            assert img.getpixel((cx + 1, y)) == (50, 50, 50, 255)
    assert img.getpixel((0, 0)) == (240, 240, 240, 255)


def test_every_digit_has_segments_in_frame():
    assert sorted(DIGIT_SEGMENTS) == list("0123456789")
    for segments in DIGIT_SEGMENTS.values():
        for x1, y1, x2, y2 in segments:
            assert -10 <= x1 <= 10 and -10 <= x2 <= 10
            assert -20 <= y1 <= 20 and -20 <= y2 <= 20


def test_draw_line_thick_and_clipped():
    img = Image.new("RGBA", (10, 10), (0, 0, 0, 255))
    px = img.load()
    red = (255, 0, 0, 255)

    draw_line(px, 10, 10, 0, 5, 9, 5, red)
    for x in range(10):
        assert px[x, 5] == red
        assert px[x, 6] == red
    assert px[0, 4] != red

    # far outside the canvas: nothing drawn, no error
    draw_line(px, 10, 10, -50, -50, -20, -30, red)
    draw_line(px, 10, 10, 5, -5, 5, 20, red)
    assert px[5, 0] == red and px[5, 9] == red


def test_random_source_failure(monkeypatch):
    def broken(n):
        raise OSError("no entropy")

    monkeypatch.setattr(generators.secrets, "randbelow", broken)
    with pytest.raises(GenerationError):
        DigitCaptcha().generate()


def test_assets_fallback_when_missing(tmp_path):
    c = AssetCaptcha(str(tmp_path / "nope")).generate()
    assert len(c.answer) == 4


def test_assets_pick_file_by_name(tmp_path):
    paths = write_samples(str(tmp_path), 3)
    (tmp_path / "captcha" / "notes.png").write_bytes(b"ignored")

    c = AssetCaptcha(str(tmp_path)).generate()
    assert str(tmp_path / "captcha" / f"{c.answer}.png") in paths
    assert Image.open(io.BytesIO(c.image)).size == (200, 80)


def test_write_samples_names_match_answers(tmp_path):
    for path in write_samples(str(tmp_path), 2):
        assert path.endswith(".png")
        assert Image.open(path).size == (200, 80)


class RepeatingCaptcha:
    def __init__(self, answers):
        self.answers = list(answers)

    def generate(self):
        answer = self.answers.pop(0)
        return generators.Challenge(image=answer.encode(), answer=answer)


def test_write_samples_redraws_duplicates(tmp_path):
    gen = RepeatingCaptcha(["1111", "1111", "2222", "1111", "3333"])
    paths = write_samples(str(tmp_path), 3, gen)

    assert [p.rsplit("/", 1)[-1] for p in paths] == ["1111.png", "2222.png", "3333.png"]
    assert len(set(paths)) == 3
    assert sorted(p.name for p in (tmp_path / "captcha").iterdir()) == ["1111.png", "2222.png", "3333.png"]


def test_write_samples_count_beyond_answer_space(tmp_path):
    with pytest.raises(ValueError):
        write_samples(str(tmp_path), 10 ** 4 + 1)
