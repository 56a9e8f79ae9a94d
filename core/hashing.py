# core/hashing.py

import logging
from pathlib import Path
from typing import Dict, MutableMapping, Optional, Union
import numpy as np

from config import HashOptions
from core.models import HASH_KIND_ORDER, HashSet
from utils.file_utils import file_identity
from utils.image_utils import ImageLoadError, load_rgba

logger = logging.getLogger(__name__)

# Number of set bits of every hex digit value
_NIBBLE_BITS = np.array([0, 1, 1, 2, 1, 2, 2, 3, 1, 2, 2, 3, 2, 3, 3, 4], dtype=np.int64)

_HEX_DIGITS = np.array(list("0123456789abcdef"))

# ASCII code -> hex digit value, -1 for anything that is not a hex digit
_HEX_LOOKUP = np.full(256, -1, dtype=np.int64)
for _value, _char in enumerate("0123456789abcdef"):
    _HEX_LOOKUP[ord(_char)] = _value
    _HEX_LOOKUP[ord(_char.upper())] = _value


class HashComputationError(Exception):
    """Raised when a pixel buffer cannot be hashed"""


def _round(values: np.ndarray) -> np.ndarray:
    # Half-up rounding, pixel values are never negative
    return np.floor(values + 0.5)


def to_grayscale(pixels: np.ndarray, luma: bool = True) -> np.ndarray:
    """
    Reduce an RGB(A) buffer to one intensity channel.

    With `luma` the ITU-R 601 weights are used, otherwise the plain channel
    mean. A 2-D buffer is returned as float unchanged.
    """
    if pixels.ndim == 2:
        return pixels.astype(np.float64)

    rgb = pixels[..., :3].astype(np.float64)
    if luma:
        gray = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    else:
        gray = rgb.mean(axis=-1)
    return _round(gray)


def resize_bilinear(gray: np.ndarray, width: int, height: int) -> np.ndarray:
    """Bilinear resize of a 2-D intensity grid, rounded to integers"""
    src_h, src_w = gray.shape

    x = np.arange(width) * (src_w / width)
    y = np.arange(height) * (src_h / height)
    x1 = np.floor(x).astype(np.int64)
    y1 = np.floor(y).astype(np.int64)
    x2 = np.minimum(x1 + 1, src_w - 1)
    y2 = np.minimum(y1 + 1, src_h - 1)

    xw = (x - x1)[np.newaxis, :]
    yw = (y - y1)[:, np.newaxis]

    p1 = gray[y1[:, None], x1[None, :]]
    p2 = gray[y1[:, None], x2[None, :]]
    p3 = gray[y2[:, None], x1[None, :]]
    p4 = gray[y2[:, None], x2[None, :]]

    value = (p1 * (1 - xw) * (1 - yw) + p2 * xw * (1 - yw) +
             p3 * (1 - xw) * yw + p4 * xw * yw)
    return _round(value)


def bits_to_hex(bits: np.ndarray) -> str:
    """
    Pack a bit vector into hex. Bit i carries weight 2**i and the result is
    the big-endian rendering padded to ceil(len(bits) / 4) digits.
    """
    bits = np.asarray(bits, dtype=np.int64).ravel()
    n_digits = max(1, -(-bits.size // 4))

    padded = np.zeros(n_digits * 4, dtype=np.int64)
    padded[:bits.size] = bits

    nibbles = padded.reshape(n_digits, 4) @ np.array([1, 2, 4, 8], dtype=np.int64)
    # Nibble 0 holds the lowest bits, so it is the last digit
    return "".join(_HEX_DIGITS[nibbles[::-1]])


def average_hash(grid: np.ndarray) -> str:
    return bits_to_hex(grid.ravel() >= grid.mean())


def difference_hash(grid: np.ndarray) -> str:
    # Row-major: bit (y * (size - 1) + x) compares pixel x with its right neighbour
    return bits_to_hex((grid[:, :-1] > grid[:, 1:]).ravel())


def dct_2d(grid: np.ndarray) -> np.ndarray:
    """Orthonormal 2-D DCT-II of a square grid"""
    n = grid.shape[0]
    k = np.arange(n)
    basis = np.cos((2 * k[np.newaxis, :] + 1) * k[:, np.newaxis] * np.pi / (2 * n))
    basis *= np.sqrt(2.0 / n)
    basis[0] = np.sqrt(1.0 / n)
    return basis @ grid @ basis.T


def dct_hash(grid: np.ndarray, dct_size: int = 8) -> str:
    reduced = min(dct_size, grid.shape[0] // 2)
    corner = dct_2d(grid)[:reduced, :reduced].ravel()

    # The DC term only says how bright the image is
    ac = corner[1:]
    return bits_to_hex(ac > ac.mean())


def perceptual_hash(grid: np.ndarray, options: HashOptions) -> str:
    """
    Block-mean perceptual hash; switches to the DCT hash when `precise`
    is set and the grid is large enough.
    """
    size = grid.shape[0]
    if options.precise and size >= options.precise_min_size:
        return dct_hash(grid, options.dct_size)

    total_avg = grid.mean()
    block = max(options.min_block_size, size // options.block_divisor)

    block_map = np.zeros_like(grid)
    for y in range(0, size, block):
        for x in range(0, size, block):
            tile = grid[y:y + block, x:x + block]
            block_map[y:y + block, x:x + block] = np.where(tile > tile.mean(), 255, 0)

    return bits_to_hex(block_map.ravel() > total_avg)


def prepare_grid(pixels: np.ndarray, options: HashOptions) -> np.ndarray:
    """Grayscale and resize a pixel buffer to the size x size hashing grid"""
    pixels = np.asarray(pixels)

    if pixels.ndim not in (2, 3) or (pixels.ndim == 3 and pixels.shape[2] not in (3, 4)):
        raise HashComputationError(f"Unsupported pixel buffer shape {pixels.shape}")
    if pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise HashComputationError("Empty pixel buffer")

    gray = to_grayscale(pixels, luma=options.to_grayscale)
    return resize_bilinear(gray, options.size, options.size)


def compute_hashes(pixels: np.ndarray, options: Optional[HashOptions] = None) -> HashSet:
    """
    Compute the enabled hashes of a pixel buffer.

    Args:
        pixels: (h, w, 4) RGBA, (h, w, 3) RGB or (h, w) grayscale buffer
        options: Hash options, defaults to 8x8 with every kind enabled

    Returns:
        HashSet; empty when the buffer cannot be interpreted
    """
    options = options or HashOptions()

    try:
        grid = prepare_grid(pixels, options)
    except HashComputationError as e:
        logger.warning("Cannot hash pixel buffer: %s", e)
        return HashSet()

    return HashSet(
        avg=average_hash(grid) if options.include_avg else None,
        diff=difference_hash(grid) if options.include_diff else None,
        perceptual=perceptual_hash(grid, options) if options.include_perceptual else None,
    )


def _hex_values(hex_str: str) -> np.ndarray:
    codes = np.frombuffer(hex_str.encode('ascii', errors='replace'), dtype=np.uint8)
    values = _HEX_LOOKUP[codes]
    if (values < 0).any():
        raise ValueError(f"Not a hex hash: {hex_str!r}")
    return values


def hamming_distance(hash1: str, hash2: str) -> int:
    """Number of differing bits; the shorter hash is left-padded with zeros"""
    width = max(len(hash1), len(hash2))
    if width == 0:
        return 0

    values1 = _hex_values(hash1.rjust(width, '0'))
    values2 = _hex_values(hash2.rjust(width, '0'))
    return int(_NIBBLE_BITS[values1 ^ values2].sum())


def hex_to_binary(hex_str: str) -> str:
    return "".join(format(int(value), '04b') for value in _hex_values(hex_str))


def combine_hashes(hashes: HashSet) -> str:
    """Binary expansion of every present hash, concatenated avg, diff, perceptual"""
    return "".join(hex_to_binary(hashes.get(kind)) for kind in HASH_KIND_ORDER if hashes.get(kind))


def binary_to_bits(binary_hash: str) -> np.ndarray:
    """'0101...' -> int array of 0/1"""
    codes = np.frombuffer(binary_hash.encode('ascii'), dtype=np.uint8)
    return (codes == ord('1')).astype(np.int64)


class HashComputer:
    """
    Hashes pixel buffers and image files with one fixed set of options.

    An optional mutable mapping acts as the external hash cache for files;
    entries are keyed by file identity and by the options in use.
    """

    def __init__(self, options: Optional[HashOptions] = None,
                 cache: Optional[MutableMapping[str, Dict[str, str]]] = None):
        self.options = options or HashOptions()
        self.cache = cache
        self.cache_hits = 0

    def compute(self, pixels: np.ndarray) -> HashSet:
        return compute_hashes(pixels, self.options)

    def _cache_key(self, path: Union[str, Path]) -> str:
        o = self.options
        kinds = "".join(flag for flag, on in (('a', o.include_avg), ('d', o.include_diff),
                                                ('p', o.include_perceptual)) if on)
        return f"{file_identity(path)}:{o.size}:{kinds}:{int(o.precise)}:{int(o.to_grayscale)}"

    def compute_for_file(self, path: Union[str, Path],
                         pixels: Optional[np.ndarray] = None) -> HashSet:
        """
        Hash an image file, going through the cache when one is attached.

        Args:
            path: Image file
            pixels: Already decoded buffer of the file, skips decoding

        Returns:
            HashSet; empty when the file cannot be read or decoded
        """
        key = None
        if self.cache is not None:
            try:
                key = self._cache_key(path)
            except OSError as e:
                logger.warning("Cannot stat %s: %s", path, e)
                return HashSet()

            cached = self.cache.get(key)
            if cached is not None:
                self.cache_hits += 1
                return HashSet.from_dict(cached)

        if pixels is None:
            try:
                pixels = load_rgba(path)
            except ImageLoadError as e:
                logger.warning("Skipping unreadable image: %s", e)
                return HashSet()

        hashes = self.compute(pixels)

        if key is not None and hashes:
            self.cache[key] = hashes.to_dict()

        return hashes

    def remember(self, path: Union[str, Path], hashes: HashSet) -> bool:
        """Store hashes computed elsewhere (e.g. in a worker process) in the cache"""
        if self.cache is None or not hashes:
            return False

        try:
            key = self._cache_key(path)
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            return False

        self.cache[key] = hashes.to_dict()
        return True
