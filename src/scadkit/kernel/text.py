"""Glyph outlines for text().

Text is laid out as a list of closed 2-D contours in model units, with
the baseline at y = 0 and the pen starting at x = 0. Two sources of
glyphs are supported:

- TrueType/OpenType fonts, read with ``freetype-py``. Quadratic and
  cubic outline segments are flattened into straight runs.
- A built-in 5x7 block font, used when ``font="block"`` is requested or
  when no font file can be found. Lower case prints as upper case.

Example:

    contours, fill = text_contours("V1.0", size=5, font="DejaVu Sans")
"""

import logging
import os
import platform
import threading
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import freetype
import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_FONTS = ("Liberation Sans", "DejaVu Sans", "Arial", "Helvetica", "FreeSans")

HALIGN = ("left", "center", "right")
VALIGN = ("baseline", "bottom", "center", "top")

# =============================================================================
# Block font
# =============================================================================

GRID_W, GRID_H = 5, 7

# Rows top to bottom; '#' is ink
BLOCK_FONT = {
    'A': ".###. #...# #...# ##### #...# #...# #...#",
    'B': "####. #...# #...# ####. #...# #...# ####.",
    'C': ".###. #...# #.... #.... #.... #...# .###.",
    'D': "####. #...# #...# #...# #...# #...# ####.",
    'E': "##### #.... #.... ####. #.... #.... #####",
    'F': "##### #.... #.... ####. #.... #.... #....",
    'G': ".###. #...# #.... #.### #...# #...# .####",
    'H': "#...# #...# #...# ##### #...# #...# #...#",
    'I': ".###. ..#.. ..#.. ..#.. ..#.. ..#.. .###.",
    'J': "..### ...#. ...#. ...#. ...#. #..#. .##..",
    'K': "#...# #..#. #.#.. ##... #.#.. #..#. #...#",
    'L': "#.... #.... #.... #.... #.... #.... #####",
    'M': "#...# ##.## #.#.# #.#.# #...# #...# #...#",
    'N': "#...# #...# ##..# #.#.# #..## #...# #...#",
    'O': ".###. #...# #...# #...# #...# #...# .###.",
    'P': "####. #...# #...# ####. #.... #.... #....",
    'Q': ".###. #...# #...# #...# #.#.# #..#. .##.#",
    'R': "####. #...# #...# ####. #.#.. #..#. #...#",
    'S': ".#### #.... #.... .###. ....# ....# ####.",
    'T': "##### ..#.. ..#.. ..#.. ..#.. ..#.. ..#..",
    'U': "#...# #...# #...# #...# #...# #...# .###.",
    'V': "#...# #...# #...# #...# #...# .#.#. ..#..",
    'W': "#...# #...# #...# #.#.# #.#.# #.#.# .#.#.",
    'X': "#...# #...# .#.#. ..#.. .#.#. #...# #...#",
    'Y': "#...# #...# .#.#. ..#.. ..#.. ..#.. ..#..",
    'Z': "##### ....# ...#. ..#.. .#... #.... #####",
    '0': ".###. #...# #..## #.#.# ##..# #...# .###.",
    '1': "..#.. .##.. ..#.. ..#.. ..#.. ..#.. .###.",
    '2': ".###. #...# ....# ...#. ..#.. .#... #####",
    '3': "##### ...#. ..#.. ...#. ....# #...# .###.",
    '4': "...#. ..##. .#.#. #..#. ##### ...#. ...#.",
    '5': "##### #.... ####. ....# ....# #...# .###.",
    '6': "..##. .#... #.... ####. #...# #...# .###.",
    '7': "##### ....# ...#. ..#.. .#... .#... .#...",
    '8': ".###. #...# #...# .###. #...# #...# .###.",
    '9': ".###. #...# #...# .#### ....# ...#. .##..",
    ' ': "..... ..... ..... ..... ..... ..... .....",
    '-': "..... ..... ..... .###. ..... ..... .....",
    '_': "..... ..... ..... ..... ..... ..... #####",
    '+': "..... ..#.. ..#.. ##### ..#.. ..#.. .....",
    '=': "..... ..... ##### ..... ##### ..... .....",
    '.': "..... ..... ..... ..... ..... ..... ..#..",
    ',': "..... ..... ..... ..... ..... ..#.. .#...",
    ':': "..... ..#.. ..... ..... ..... ..#.. .....",
    '!': "..#.. ..#.. ..#.. ..#.. ..#.. ..... ..#..",
    '?': ".###. #...# ....# ...#. ..#.. ..... ..#..",
    '/': "....# ....# ...#. ..#.. .#... #.... #....",
    '(': "...#. ..#.. .#... .#... .#... ..#.. ...#.",
    ')': ".#... ..#.. ...#. ...#. ...#. ..#.. .#...",
    "'": "..#.. ..#.. ..... ..... ..... ..... .....",
}

# Drawn for characters the block font lacks
MISSING_GLYPH = "##### #...# #...# #...# #...# #...# #####"


def _block_runs(char: str) -> List[Tuple[int, int, int]]:
    """Horizontal ink runs of a block glyph as (row_from_bottom, x0, x1)."""
    rows = BLOCK_FONT.get(char.upper(), MISSING_GLYPH).split()
    runs = []
    for r, row in enumerate(rows):
        y = GRID_H - 1 - r
        x = 0
        while x < GRID_W:
            if row[x] != '#':
                x += 1
                continue
            start = x
            while x < GRID_W and row[x] == '#':
                x += 1
            runs.append((y, start, x))
    return runs


def block_contours(text: str, size: float, spacing: float = 1.0
                   ) -> Tuple[List[np.ndarray], float]:
    """Rectangles for `text` in the block font, and the advance width.

    Glyphs are `size` tall and 0.8 * `size` wide.
    """
    cell_w = 0.8 * size / GRID_W
    cell_h = size / GRID_H
    advance = 0.8 * size * (1.0 + 0.2 * spacing)
    contours = []
    pen = 0.0
    for char in text:
        for y, x0, x1 in _block_runs(char):
            left, right = pen + x0 * cell_w, pen + x1 * cell_w
            bottom, top = y * cell_h, (y + 1) * cell_h
            contours.append(np.array([[left, bottom], [right, bottom],
                                      [right, top], [left, top]]))
        pen += advance
    width = pen - 0.8 * size * 0.2 * spacing if text else 0.0
    return contours, width


# =============================================================================
# Font files
# =============================================================================

def _font_dirs() -> List[str]:
    system = platform.system()
    if system == "Darwin":
        return ["/System/Library/Fonts", "/System/Library/Fonts/Supplemental",
                "/Library/Fonts", os.path.expanduser("~/Library/Fonts")]
    if system == "Windows":
        return [os.path.join(os.environ.get("WINDIR", "C:\\Windows"), "Fonts")]
    return ["/usr/share/fonts", "/usr/local/share/fonts",
            os.path.expanduser("~/.fonts"), os.path.expanduser("~/.local/share/fonts")]


def _file_names(name: str) -> List[str]:
    """Candidate file names for a family like "Liberation Sans:style=Bold"."""
    family, _, style = name.partition(":")
    style = style.split("=", 1)[1].strip() if "=" in style else "Regular"
    stems = []
    for base in (family.strip(), family.replace(" ", "")):
        stems += [f"{base}-{style}", base, base.lower()]
    return [stem + ext for stem in stems for ext in (".ttf", ".otf")]


@lru_cache(maxsize=64)
def find_font(name: str) -> Optional[str]:
    """Path of a font file by family name, a path, or None."""
    if os.path.isfile(name):
        return name
    wanted = {f.lower() for f in _file_names(name)}
    for root_dir in _font_dirs():
        if not os.path.isdir(root_dir):
            continue
        for dirpath, _, files in os.walk(root_dir):
            for filename in files:
                if filename.lower() in wanted:
                    return os.path.join(dirpath, filename)
    return None


def resolve_font(font: Optional[str]) -> Optional[str]:
    """Font file to use, or None for the block font."""
    if font == "block":
        return None
    if font:
        path = find_font(font)
        if path is not None:
            return path
        logger.warning("font '%s' not found; using the default font", font)
    for name in DEFAULT_FONTS:
        path = find_font(name)
        if path is not None:
            return path
    logger.info("no font files found; using the block font")
    return None


# =============================================================================
# Outline flattening
# =============================================================================

def _bezier(p0, controls: Sequence[np.ndarray], p1, steps: int) -> np.ndarray:
    """Points after p0 along a quadratic or cubic curve, ending at p1."""
    t = np.linspace(0.0, 1.0, steps + 1)[1:, None]
    if len(controls) == 1:
        c = controls[0]
        return (1 - t) ** 2 * p0 + 2 * (1 - t) * t * c + t ** 2 * p1
    c0, c1 = controls
    return ((1 - t) ** 3 * p0 + 3 * (1 - t) ** 2 * t * c0
            + 3 * (1 - t) * t ** 2 * c1 + t ** 3 * p1)


def flatten_contour(points: np.ndarray, tags: Sequence[int], steps: int) -> np.ndarray:
    """Turn one FreeType contour into a polyline.

    Bit 0 of a tag marks an on-curve point; an off-curve point with bit 1
    set is a cubic control, otherwise a conic one. Two conic controls in
    a row imply an on-curve point halfway between them.
    """
    on = [bool(t & 1) for t in tags]
    cubic = [not o and bool(t & 2) for t, o in zip(tags, on)]
    n = len(points)
    if any(on):
        first = on.index(True)
        order = [(first + i) % n for i in range(1, n)]
        start = points[first]
    else:
        order = list(range(n))
        start = (points[-1] + points[0]) / 2.0

    out = [start]
    current, pending = start, []
    for i in order + [None]:
        p = start if i is None else points[i]
        if i is None or on[i]:
            if pending:
                out.extend(_bezier(current, pending, p, steps))
            else:
                out.append(p)
            current, pending = p, []
        elif cubic[i]:
            pending.append(p)
        else:
            if pending:
                mid = (pending[0] + p) / 2.0
                out.extend(_bezier(current, pending, mid, steps))
                current = mid
            pending = [p]
    return np.asarray(out[:-1], dtype=np.float64)


# FreeType faces are not safe to share between threads
_face_lock = threading.Lock()


@lru_cache(maxsize=8)
def _face(path: str) -> "freetype.Face":
    return freetype.Face(path)


def font_contours(text: str, path: str, size: float, spacing: float = 1.0,
                  steps: int = 4) -> Tuple[List[np.ndarray], float]:
    """Flattened outlines for `text` set in the font at `path`.

    The font is scaled so a capital H is `size` tall. Returns the contours
    and the advance width of the whole string.
    """
    with _face_lock:
        try:
            face = _face(path)
        except freetype.FT_Exception as e:
            raise ValueError(f"cannot read font '{path}': {e}") from e
        return _font_contours(face, text, size, spacing, steps)


def _font_contours(face, text: str, size: float, spacing: float,
                   steps: int) -> Tuple[List[np.ndarray], float]:
    flags = freetype.FT_LOAD_NO_SCALE | freetype.FT_LOAD_NO_BITMAP
    face.load_char('H', flags)
    cap = face.glyph.outline.get_bbox().yMax
    if cap <= 0:
        cap = 0.7 * face.units_per_EM
    scale = size / float(cap)

    contours = []
    pen = 0.0
    previous = None
    for char in text:
        index = face.get_char_index(char)
        if previous is not None and face.has_kerning:
            pen += face.get_kerning(previous, index, freetype.FT_KERNING_UNSCALED).x * spacing
        face.load_glyph(index, flags)
        outline = face.glyph.outline
        points = np.asarray(outline.points, dtype=np.float64).reshape(-1, 2)
        start = 0
        for end in outline.contours:
            loop = flatten_contour(points[start:end + 1], outline.tags[start:end + 1], steps)
            if len(loop) >= 3:
                contours.append((loop + (pen, 0.0)) * scale)
            start = end + 1
        pen += face.glyph.advance.x * spacing
        previous = index
    return contours, pen * scale


# =============================================================================
# Layout
# =============================================================================

def _aligned(contours: List[np.ndarray], width: float, halign: str,
             valign: str) -> List[np.ndarray]:
    if halign not in HALIGN:
        raise ValueError(f"halign must be one of {', '.join(HALIGN)}, got '{halign}'")
    if valign not in VALIGN:
        raise ValueError(f"valign must be one of {', '.join(VALIGN)}, got '{valign}'")
    dx = {"left": 0.0, "center": -width / 2.0, "right": -width}[halign]
    dy = 0.0
    if contours and valign != "baseline":
        ys = np.concatenate([c[:, 1] for c in contours])
        dy = {"bottom": -ys.min(), "top": -ys.max(),
              "center": -(ys.min() + ys.max()) / 2.0}[valign]
    return [c + (dx, dy) for c in contours]


def text_contours(text: str, size: float = 10.0, font: Optional[str] = None,
                  halign: str = "left", valign: str = "baseline",
                  spacing: float = 1.0, steps: int = 4) -> Tuple[List[np.ndarray], bool]:
    """
    Lay out `text` as closed contours.

    Args:
        text: Characters to set
        size: Height of a capital letter
        font: Family name, font file path, "block", or None for the default
        halign, valign: Alignment of the whole string about the origin
        spacing: Multiplier on the advance between characters
        steps: Straight runs per curved outline segment

    Returns:
        The contours and True when they use non-zero winding (font
        outlines) rather than being plain counter-clockwise rectangles.
    """
    path = resolve_font(font)
    if path is None:
        contours, width = block_contours(text, size, spacing)
        return _aligned(contours, width, halign, valign), False
    contours, width = font_contours(text, path, size, spacing, steps)
    return _aligned(contours, width, halign, valign), True

