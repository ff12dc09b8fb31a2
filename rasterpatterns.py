"""
rasterpatterns.py
=================

Procedural raster pattern generators. Each generator turns a small config
(canvas size, a four-color palette given as hex strings, and a few numeric
hints) into a Pillow RGB image.

Patterns
--------
- blocks  A turtle-graphics L-system. A randomly generated rewriting rule for
          'F' is applied twice to the axiom "+FA+", and the resulting string is
          walked by a turtle that draws black anti-aliased paths decorated with
          colored, outlined rectangles. 'A' teleports the turtle into the
          diagonally opposite quadrant of the canvas.
- julia   A multi-seed escape-time fractal. Several curated Julia constants are
          anchored at random points of the canvas quadrants; the escape counter
          of every pixel is carried from one seed's iteration into the next and
          the final count is mapped onto four color bands.

Quick start
-----------
>>> from rasterpatterns import BlocksConfig, BlocksPattern, rng_from_seed
>>> cfg = BlocksConfig(width=800, height=600, color1="f72585", color2="4cc9f0",
...                    color3="f49d37", bg_color="111111",
...                    block_size=2, line_size=3, density=1.5)
>>> img = BlocksPattern(cfg, rng=rng_from_seed(7)).generate()
>>> img.size
(800, 600)

Command line
------------
$ rasterpatterns blocks --config example/blocks.json --out /tmp/blocks.png --seed 7
$ rasterpatterns julia --config example/julia.json --base64 > julia.b64
$ rasterpatterns julia --config example/julia.json --show

Config files are JSON objects using the keys x, y, color1, color2, color3,
bgColor plus blockSize, lineSize, density (blocks) or min, max (julia).
Colors are six hex digits without a leading '#'.

License: MIT
"""

import argparse
import base64
import io
import json
import logging
import math
import os
import random
import string
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

try:
    from PIL import Image, ImageDraw
except Exception as e:  # pragma: no cover
    raise SystemExit("This script requires Pillow. Try: pip install pillow") from e

try:
    import numpy as np
except Exception as e:  # pragma: no cover
    raise SystemExit("This script requires NumPy. Try: pip install numpy") from e


logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]
Rect = Tuple[int, int, int, int]  # (x1, y1, x2, y2)

BLACK: RGB = (0, 0, 0)


class ConfigError(ValueError):
    pass


# ---------------------------- Utilities ------------------------------------

def decode_hex(s: str) -> RGB:
    """Convert 'RRGGBB' to (r,g,b). Anything malformed decodes to black."""
    if len(s) != 6 or any(ch not in string.hexdigits for ch in s):
        return BLACK
    return (int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16))


def rng_from_seed(seed: Optional[int]) -> random.Random:
    """Return a Random instance from seed (or system)."""
    r = random.Random()
    if seed is not None:
        r.seed(int(seed))
    else:
        r.seed()
    return r


def quadrants(width: int, height: int) -> List[Rect]:
    """Split the canvas at its integer midlines.

    Order is top-left, top-right, bottom-left, bottom-right.
    """
    halfx = width // 2
    halfy = height // 2
    return [
        (0, 0, halfx, halfy),
        (halfx, 0, width, halfy),
        (0, halfy, halfx, height),
        (halfx, halfy, width, height),
    ]


def locate(x: int, y: int, quads: Sequence[Rect]) -> int:
    """Index of the first quadrant containing (x, y), edges inclusive; -1 if none."""
    for idx, (x1, y1, x2, y2) in enumerate(quads):
        if x1 <= x <= x2 and y1 <= y <= y2:
            return idx
    return -1


def random_point(rng: random.Random, rect: Rect) -> Tuple[int, int]:
    """Uniform point in [x1, x2) x [y1, y2); a zero-width side collapses to its start."""
    x1, y1, x2, y2 = rect
    x = rng.randrange(x1, x2) if x2 > x1 else x1
    y = rng.randrange(y1, y2) if y2 > y1 else y1
    return (x, y)


def scaled_range(width: int, height: int, hint: float) -> Tuple[int, int]:
    """Inclusive integer range for random magnitudes, proportional to the canvas.

    base = (width + height) * hint; the range is [1%, 3%] of base.
    """
    hint = float(hint)
    if not math.isfinite(hint) or hint < 0:
        hint = 0.0
    base = (width + height) * hint
    return (int(base * 0.01), int(base * 0.03))


def weighted_choice(rng: random.Random, items: Sequence[str], weights: Sequence[int]) -> str:
    """Pick one item with probability weight/sum(weights)."""
    threshold = rng.randrange(sum(weights))
    total = 0
    for item, weight in zip(items, weights):
        total += weight
        if total > threshold:
            return item
    return items[-1]


# ---------------------------- Drawing primitives ----------------------------

def new_canvas(width: int, height: int, color: RGB) -> Image.Image:
    return Image.new("RGB", (width, height), color=color)


def _blend(color: RGB, existing: RGB, weight: float) -> RGB:
    return tuple(int(round(c * weight + e * (1.0 - weight))) for c, e in zip(color, existing))


def draw_antialiased_line(
    canvas: Image.Image,
    start: Tuple[int, int],
    end: Tuple[int, int],
    color: RGB,
) -> None:
    """Xiaolin Wu line from start to end (both inclusive), blended into the canvas.

    Pixels falling outside the canvas are skipped.
    """
    px = canvas.load()
    width, height = canvas.size
    (x0, y0), (x1, y1) = start, end

    steep = abs(y1 - y0) > abs(x1 - x0)
    if steep:
        x0, y0, x1, y1 = y0, x0, y1, x1
    if x0 > x1:
        x0, x1, y0, y1 = x1, x0, y1, y0

    dx = x1 - x0
    gradient = (y1 - y0) / dx if dx else 0.0
    fy = float(y0)
    for x in range(x0, x1 + 1):
        y = math.floor(fy)
        frac = fy - y
        for yy, weight in ((y, 1.0 - frac), (y + 1, frac)):
            cx, cy = (yy, x) if steep else (x, yy)
            if 0 <= cx < width and 0 <= cy < height:
                px[cx, cy] = _blend(color, px[cx, cy], weight)
        fy += gradient


def draw_filled_rect(canvas: Image.Image, x: int, y: int, w: int, h: int, color: RGB) -> None:
    """Fill the w x h rectangle whose top-left corner is (x, y). Empty sizes draw nothing."""
    if w <= 0 or h <= 0:
        return
    ImageDraw.Draw(canvas).rectangle([x, y, x + w - 1, y + h - 1], fill=color)


def draw_hollow_rect(canvas: Image.Image, x: int, y: int, w: int, h: int, color: RGB) -> None:
    """One pixel outline of the same rectangle draw_filled_rect covers."""
    if w <= 0 or h <= 0:
        return
    ImageDraw.Draw(canvas).rectangle([x, y, x + w - 1, y + h - 1], outline=color, width=1)


# ---------------------------- Configs ---------------------------------------

@dataclass(frozen=True)
class BlocksConfig:
    width: int
    height: int
    color1: str
    color2: str
    color3: str
    bg_color: str
    block_size: int = 2      # rectangle side hint
    line_size: int = 3       # turtle step hint
    density: float = 1.5     # rule length hint


@dataclass(frozen=True)
class JuliaConfig:
    width: int
    height: int
    color1: str
    color2: str
    color3: str
    bg_color: str
    min: int = 1             # seed count, inclusive
    max: int = 5             # seed count, exclusive


def _palette(cfg: Any) -> Tuple[List[RGB], RGB]:
    """Decoded (foreground colors, background) of a Blocks or Julia config."""
    fg = [decode_hex(c) for c in (cfg.color1, cfg.color2, cfg.color3)]
    return fg, decode_hex(cfg.bg_color)


# ---------------------------- Patterns --------------------------------------

class PatternGenerator:
    """A configured pattern. generate() returns a fresh RGB canvas and never raises."""

    def __init__(self, config: Any, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng if rng is not None else rng_from_seed(None)

    def generate(self) -> Image.Image:
        """Render a new canvas from the held config; subclasses must override."""
        raise NotImplementedError


AXIOM = "+FA+"
REWRITE_ROUNDS = 2
TURN_ANGLE = 90.0
SYMBOLS = ("F", "+", "-", "A")
SYMBOL_WEIGHTS = (15, 10, 10, 8)
BRACKETS = ("[", "]", "[", "]", "[", "]")


def insert_brackets(rng: random.Random, rule: str) -> str:
    """Insert the bracket pairs before distinct, randomly chosen characters of rule.

    Strings too short for all three pairs get as many pairs as fit.
    """
    count = 2 * min(len(BRACKETS) // 2, len(rule) // 2)
    positions = sorted(rng.sample(range(len(rule)), count))
    parts = []
    prev = 0
    for bracket, pos in zip(BRACKETS, positions):
        parts.append(rule[prev:pos])
        parts.append(bracket)
        prev = pos
    parts.append(rule[prev:])
    return "".join(parts)


def rewrite(axiom: str, rules: Sequence[Tuple[str, str]]) -> str:
    """One rewriting pass. The first rule registered for a symbol wins; others pass through."""
    out = []
    for ch in axiom:
        for symbol, replacement in rules:
            if ch == symbol:
                out.append(replacement)
                break
        else:
            out.append(ch)
    return "".join(out)


class BlocksPattern(PatternGenerator):
    config: BlocksConfig

    def scaled_range(self, hint: float) -> Tuple[int, int]:
        return scaled_range(self.config.width, self.config.height, hint)

    def generate_rule(self, lower: int, upper: int, branching: bool) -> str:
        """Random replacement for 'F' with length in [lower, upper]."""
        rng = self.rng
        length = rng.randint(lower, upper)
        rule = "".join(weighted_choice(rng, SYMBOLS, SYMBOL_WEIGHTS) for _ in range(length))
        if not branching:
            return rule
        return insert_brackets(rng, rule)

    def production(self) -> str:
        axiom = AXIOM
        rules: List[Tuple[str, str]] = []
        lower, upper = self.scaled_range(self.config.density)
        for _ in range(REWRITE_ROUNDS):
            rules.append(("F", self.generate_rule(lower, upper, branching=True)))
            axiom = rewrite(axiom, rules)
        return axiom

    def walk(
        self,
        canvas: Image.Image,
        commands: str,
        start: Optional[Tuple[int, int]] = None,
    ) -> Tuple[int, int, float]:
        """Interpret commands with the turtle, drawing onto canvas.

        The turtle starts at start (canvas center by default) heading 0 degrees.
        Returns the final (x, y, heading).
        """
        cfg = self.config
        rng = self.rng
        W, H = cfg.width, cfg.height
        colors, _ = _palette(cfg)
        quads = quadrants(W, H)
        step_range = self.scaled_range(cfg.line_size)
        block_range = self.scaled_range(cfg.block_size)

        x, y = start if start is not None else (W // 2, H // 2)
        heading = 0.0
        saved: List[Tuple[int, int, float]] = []

        for sym in commands:
            if sym == "F":
                step = rng.randint(*step_range)
                rad = math.radians(heading)
                nx = int(x + step * math.cos(rad))
                ny = int(y + step * math.sin(rad))
                draw_antialiased_line(canvas, (x, y), (nx, ny), BLACK)

                color = rng.choice(colors)
                w = rng.randint(*block_range)
                h = rng.randint(*block_range)
                draw_filled_rect(canvas, x, y, w, h, color)
                draw_hollow_rect(canvas, x, y, w, h, BLACK)
                x, y = nx, ny
            elif sym == "+":
                heading += TURN_ANGLE
            elif sym == "-":
                heading -= TURN_ANGLE
            elif sym == "[":
                saved.append((x, y, heading))
            elif sym == "]":
                if saved:
                    x, y, heading = saved.pop()
            elif sym == "A":
                idx = locate(x, y, quads)
                # 0 <-> 3, 1 <-> 2
                target = quads[3 - idx] if idx >= 0 else (0, 0, W, H)
                x, y = random_point(rng, target)

        return (x, y, heading)

    def generate(self) -> Image.Image:
        cfg = self.config
        _, bg = _palette(cfg)
        canvas = new_canvas(cfg.width, cfg.height, bg)
        commands = self.production()
        logger.debug("blocks %dx%d: %d symbols, step %s, block %s",
                     cfg.width, cfg.height, len(commands),
                     self.scaled_range(cfg.line_size), self.scaled_range(cfg.block_size))
        self.walk(canvas, commands)
        return canvas


JULIA_CONSTANTS: Tuple[complex, ...] = (
    complex(-0.8, 0.156),
    complex(-0.7269, 0.1889),
    complex(-0.4, 0.6),
    complex(0.37, 0.1),
    complex(0.355, 0.355),
    complex(-0.2527, -0.6709),
    complex(0.3568, -0.07694),
    complex(0.3256, 0.5066),
    complex(-0.8884, -0.2436),
    complex(-0.5601, 0.4909),
    complex(-0.6539, 0.4128),
)
MAX_ITERATIONS = 255
ESCAPE_RADIUS = 2.0
BAND_THRESHOLDS = (50, 120, 200)


@dataclass(frozen=True)
class FractalSeed:
    constant: complex
    start: Tuple[int, int]


def band_index(i: int) -> int:
    """0 = background, 1..3 = color1..color3."""
    return sum(1 for t in BAND_THRESHOLDS if i >= t)


def julia_scales(width: int, height: int, base: float) -> Tuple[float, float]:
    """Per-axis pixel -> iteration-space factors; the longer axis is stretched by the aspect ratio."""
    if width == height:
        return (base / width, base / height)
    ratio = width / height
    scalex = scaley = base
    if ratio > 1.0:
        scalex = base * ratio
    else:
        scaley = base / ratio
    return (scalex / width, scaley / height)


def escape_counts(
    width: int,
    height: int,
    seeds: Sequence[FractalSeed],
    scalex: float,
    scaley: float,
) -> np.ndarray:
    """Escape counter per pixel, shape (height, width).

    One counter per pixel is carried through the seeds in order: each seed
    starts a fresh orbit but keeps counting from where the previous one
    stopped, up to MAX_ITERATIONS.
    """
    ys, xs = np.mgrid[0:height, 0:width]
    counts = np.zeros((height, width), dtype=np.int32)
    for seed in seeds:
        sx, sy = seed.start
        cx = np.maximum(xs - sx, 0) * scalex - 1.5
        cy = np.maximum(ys - sy, 0) * scaley - 1.5
        z = cx + 1j * cy
        active = (counts < MAX_ITERATIONS) & (np.abs(z) <= ESCAPE_RADIUS)
        while active.any():
            za = z[active]
            z[active] = za * za + seed.constant
            counts[active] += 1
            active &= (counts < MAX_ITERATIONS) & (np.abs(z) <= ESCAPE_RADIUS)
    return counts


class JuliaPattern(PatternGenerator):
    config: JuliaConfig

    def seed_count(self) -> int:
        cfg = self.config
        n = self.rng.randrange(cfg.min, cfg.max) if cfg.max > cfg.min else cfg.min
        return max(1, min(n, len(JULIA_CONSTANTS)))

    def make_seeds(self, quads: Sequence[Rect]) -> List[FractalSeed]:
        """Distinct constants, anchored in the quadrants in turn."""
        rng = self.rng
        constants = rng.sample(JULIA_CONSTANTS, self.seed_count())
        return [
            FractalSeed(constant=c, start=random_point(rng, quads[k % len(quads)]))
            for k, c in enumerate(constants)
        ]

    def generate(self) -> Image.Image:
        cfg = self.config
        rng = self.rng
        W, H = cfg.width, cfg.height
        colors, bg = _palette(cfg)
        quads = quadrants(W, H)

        base = 2.5 + 2.5 * rng.random()
        seeds = self.make_seeds(quads)
        scalex, scaley = julia_scales(W, H, base)
        logger.debug("julia %dx%d: base %.3f, seeds %s", W, H, base,
                     [(s.constant, s.start) for s in seeds])

        counts = escape_counts(W, H, seeds, scalex, scaley)
        palette = np.array([bg] + colors, dtype=np.uint8)
        pixels = palette[np.digitize(counts, BAND_THRESHOLDS)]
        return Image.fromarray(pixels)


# ---------------------------- Config parsing --------------------------------

def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigError(msg)


def _field(obj: Dict[str, Any], key: str) -> Any:
    _require(key in obj, f"missing field {key!r}")
    return obj[key]


def _as_int(obj: Dict[str, Any], key: str, lo: int, hi: Optional[int] = None) -> int:
    v = _field(obj, key)
    _require(isinstance(v, int) and not isinstance(v, bool), f"{key} must be an integer")
    _require(v >= lo, f"{key} must be >= {lo}")
    _require(hi is None or v <= hi, f"{key} must be <= {hi}")
    return v


def _as_color(obj: Dict[str, Any], key: str) -> str:
    v = _field(obj, key)
    _require(isinstance(v, str), f"{key} must be a hex color string")
    return v


def _common_fields(obj: Any) -> Dict[str, Any]:
    _require(isinstance(obj, dict), "config must be a JSON object")
    return dict(
        width=_as_int(obj, "x", 1),
        height=_as_int(obj, "y", 1),
        color1=_as_color(obj, "color1"),
        color2=_as_color(obj, "color2"),
        color3=_as_color(obj, "color3"),
        bg_color=_as_color(obj, "bgColor"),
    )


def parse_blocks_config(obj: Any) -> BlocksConfig:
    common = _common_fields(obj)
    density = _field(obj, "density")
    _require(isinstance(density, (int, float)) and not isinstance(density, bool),
             "density must be a number")
    _require(math.isfinite(density), "density must be finite")
    _require(density >= 0, "density must be >= 0")
    return BlocksConfig(
        block_size=_as_int(obj, "blockSize", 0, 255),
        line_size=_as_int(obj, "lineSize", 0, 255),
        density=float(density),
        **common,
    )


def parse_julia_config(obj: Any) -> JuliaConfig:
    common = _common_fields(obj)
    lo = _as_int(obj, "min", 0, 255)
    hi = _as_int(obj, "max", 0, 255)
    _require(lo < hi, "min must be less than max")
    return JuliaConfig(min=lo, max=hi, **common)


PATTERNS: Dict[str, Tuple[Callable[..., PatternGenerator], Callable[[Any], Any]]] = {
    "blocks": (BlocksPattern, parse_blocks_config),
    "julia": (JuliaPattern, parse_julia_config),
}


def load_config(path: str, pattern: str) -> Any:
    """Read and validate the JSON config for the named pattern."""
    entry = PATTERNS.get(pattern)
    if not entry:
        raise ValueError(f"Unknown pattern: {pattern!r}. Choose from {list(PATTERNS)}")
    with open(path, encoding="utf-8") as f:
        try:
            obj = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    return entry[1](obj)


def build_pattern(pattern: str, config: Any, seed: Optional[int] = None) -> PatternGenerator:
    entry = PATTERNS.get(pattern)
    if not entry:
        raise ValueError(f"Unknown pattern: {pattern!r}. Choose from {list(PATTERNS)}")
    return entry[0](config, rng=rng_from_seed(seed))


# ---------------------------- Output ----------------------------------------

def save_image(img: Image.Image, path: str) -> str:
    """Write the image; the format follows the file extension. Returns path."""
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
    img.save(path)
    return path


def encode_base64(img: Image.Image) -> str:
    """PNG-encode in memory and return the base64 text."""
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def display_image(img: Image.Image, title: str = "image") -> None:
    img.show(title=title)


# ---------------------------- CLI -------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Generate procedural raster patterns")
    ap.add_argument("pattern", choices=sorted(PATTERNS.keys()))
    ap.add_argument("--config", required=True, help="Path to the pattern's JSON config")
    ap.add_argument("--out", default=None, help="Output image path (e.g. pattern.png)")
    ap.add_argument("--base64", action="store_true", help="Print the PNG as base64 text")
    ap.add_argument("--show", action="store_true", help="Open the result in an image viewer")
    ap.add_argument("--seed", type=int, default=None)
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    if not (args.out or args.base64 or args.show):
        ap.error("choose at least one of --out, --base64, --show")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    try:
        config = load_config(args.config, args.pattern)
        img = build_pattern(args.pattern, config, seed=args.seed).generate()
        if args.out:
            save_image(img, args.out)
            logger.info("wrote %s", args.out)
        if args.base64:
            print(encode_base64(img))
        if args.show:
            display_image(img, title=args.pattern)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        print(f"File error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
