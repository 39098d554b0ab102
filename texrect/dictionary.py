"""Fixed 6x6 fiducial marker dictionary.

Each marker ID maps to a 6x6 grid of bits (1 = light cell, 0 = dark cell)
stored compactly as five bytes. Bits are read most-significant first across
the byte sequence and laid out row-major; the last byte only carries the
remaining low-order bits (36 - 8 * 4 = 4). This is the same packing used by
the printed marker artwork, so it must not change.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

MARKER_BITS = 6

# Canonical 6x6 table, IDs 0-99 (25 templates of four consecutive IDs).
_PACKED_6X6 = {
    0: (30, 61, 216, 42, 6),
    1: (14, 251, 163, 137, 1),
    2: (21, 144, 126, 172, 13),
    3: (201, 27, 48, 105, 14),
    4: (214, 7, 214, 225, 5),
    5: (216, 232, 224, 230, 8),
    6: (66, 104, 180, 31, 5),
    7: (136, 165, 15, 41, 10),
    8: (48, 125, 82, 79, 13),
    9: (60, 47, 52, 179, 12),
    10: (69, 223, 199, 78, 3),
    11: (72, 216, 91, 37, 7),
    12: (113, 5, 88, 252, 6),
    13: (134, 220, 250, 208, 7),
    14: (141, 114, 169, 63, 6),
    15: (162, 184, 157, 205, 14),
    16: (9, 253, 30, 156, 4),
    17: (21, 77, 189, 24, 15),
    18: (48, 10, 49, 14, 2),
    19: (72, 7, 239, 175, 13),
    20: (86, 223, 17, 219, 6),
    21: (102, 136, 50, 116, 12),
    22: (118, 232, 203, 120, 1),
    23: (154, 83, 217, 207, 3),
    24: (169, 203, 132, 2, 4),
    25: (198, 117, 73, 73, 0),
    26: (193, 210, 136, 148, 1),
    27: (231, 72, 8, 82, 11),
    28: (234, 47, 202, 132, 8),
    29: (233, 99, 183, 123, 1),
    30: (250, 54, 101, 42, 15),
    31: (6, 91, 255, 123, 13),
    32: (5, 65, 215, 45, 6),
    33: (12, 247, 36, 106, 2),
    34: (19, 56, 163, 158, 11),
    35: (21, 168, 147, 231, 4),
    36: (58, 65, 126, 233, 14),
    37: (79, 17, 226, 108, 0),
    38: (83, 13, 182, 210, 0),
    39: (88, 155, 250, 227, 4),
    40: (100, 9, 232, 160, 11),
    41: (96, 83, 122, 137, 1),
    42: (97, 89, 6, 155, 10),
    43: (107, 255, 120, 215, 11),
    44: (112, 173, 150, 164, 15),
    45: (117, 132, 111, 113, 10),
    46: (122, 149, 25, 47, 12),
    47: (134, 9, 118, 10, 10),
    48: (138, 45, 68, 195, 15),
    49: (147, 235, 120, 177, 4),
    50: (152, 141, 168, 77, 4),
    51: (158, 222, 43, 60, 8),
    52: (165, 41, 224, 123, 8),
    53: (181, 147, 184, 85, 15),
    54: (183, 248, 228, 38, 15),
    55: (188, 32, 82, 37, 14),
    56: (192, 68, 135, 118, 5),
    57: (196, 195, 36, 37, 9),
    58: (197, 169, 27, 216, 13),
    59: (206, 115, 230, 178, 12),
    60: (205, 12, 166, 39, 2),
    61: (201, 67, 93, 68, 13),
    62: (207, 190, 128, 243, 4),
    63: (229, 125, 21, 135, 7),
    64: (239, 198, 133, 142, 9),
    65: (247, 126, 243, 119, 2),
    66: (44, 228, 63, 37, 4),
    67: (43, 220, 255, 75, 3),
    68: (55, 199, 221, 189, 10),
    69: (161, 162, 84, 224, 15),
    70: (169, 130, 193, 187, 5),
    71: (216, 27, 73, 176, 8),
    72: (3, 88, 41, 248, 6),
    73: (7, 196, 9, 95, 12),
    74: (15, 226, 102, 23, 11),
    75: (20, 72, 54, 68, 1),
    76: (16, 173, 95, 251, 7),
    77: (18, 130, 149, 83, 15),
    78: (22, 225, 49, 132, 12),
    79: (24, 122, 73, 107, 0),
    80: (26, 232, 134, 17, 2),
    81: (25, 19, 174, 10, 1),
    82: (27, 103, 181, 161, 7),
    83: (37, 220, 149, 240, 11),
    84: (40, 137, 97, 247, 6),
    85: (51, 84, 20, 106, 10),
    86: (49, 193, 108, 31, 7),
    87: (51, 203, 24, 198, 6),
    88: (62, 207, 228, 144, 15),
    89: (70, 69, 24, 163, 15),
    90: (68, 186, 112, 182, 7),
    91: (65, 156, 98, 62, 8),
    92: (72, 209, 145, 74, 1),
    93: (84, 244, 153, 246, 13),
    94: (87, 90, 156, 129, 3),
    95: (85, 131, 85, 178, 12),
    96: (87, 183, 118, 16, 15),
    97: (92, 52, 54, 254, 4),
    98: (92, 72, 252, 119, 14),
    99: (94, 110, 239, 64, 2),
}

PACKED_6X6: Mapping[int, Tuple[int, ...]] = MappingProxyType(_PACKED_6X6)


def unpack_bits(packed: Sequence[int], n_bits: int = MARKER_BITS * MARKER_BITS) -> np.ndarray:
    """Unpack a marker's byte sequence into a flat bit vector.

    Args:
        packed: Byte values, most significant bit first
        n_bits: Number of bits encoded (36 for a 6x6 marker)

    Returns:
        Array of n_bits uint8 values in {0, 1}
    """
    bits: List[int] = []
    for byte in packed:
        remaining = n_bits - len(bits)
        if remaining <= 0:
            break
        for i in range(min(7, remaining - 1), -1, -1):
            bits.append((int(byte) >> i) & 1)

    if len(bits) != n_bits:
        raise ValueError(f"Packed marker holds {len(bits)} bits, expected {n_bits}")

    return np.array(bits, dtype=np.uint8)


def pack_bits(bits: np.ndarray) -> Tuple[int, ...]:
    """Pack a bit grid back into bytes; inverse of :func:`unpack_bits`."""
    flat = [int(b) & 1 for b in np.asarray(bits).ravel()]
    packed = []
    for start in range(0, len(flat), 8):
        byte = 0
        for bit in flat[start:start + 8]:
            byte = (byte << 1) | bit
        packed.append(byte)
    return tuple(packed)


class MarkerDictionary:
    """Immutable codebook of marker bit patterns.

    IDs are contiguous from 0. Patterns are unpacked once at construction into
    an (N, 36) read-only array used for Hamming-distance matching.
    """

    def __init__(self, packed: Mapping[int, Sequence[int]], marker_bits: int = MARKER_BITS):
        ids = sorted(packed)
        if ids != list(range(len(ids))):
            raise ValueError("Marker IDs must be contiguous from 0")

        self.marker_bits = marker_bits
        n_bits = marker_bits * marker_bits
        table = np.stack([unpack_bits(packed[i], n_bits) for i in ids]) if ids else np.zeros((0, n_bits), np.uint8)
        table.setflags(write=False)
        self._table = table

        logger.debug(f"Marker dictionary: {len(ids)} markers of {marker_bits}x{marker_bits} bits")

    def __len__(self) -> int:
        return self._table.shape[0]

    def __contains__(self, marker_id: object) -> bool:
        return isinstance(marker_id, (int, np.integer)) and 0 <= int(marker_id) < len(self)

    @property
    def table(self) -> np.ndarray:
        """Read-only (N, bits*bits) array of unpacked patterns."""
        return self._table

    def decode(self, marker_id: int) -> Optional[np.ndarray]:
        """Return the marker's bit grid as a boolean array, or None if unknown."""
        if marker_id not in self:
            return None
        return self._table[int(marker_id)].reshape(self.marker_bits, self.marker_bits).astype(bool)

    def identify(self, grid: np.ndarray, max_bit_errors: int) -> Optional[Tuple[int, int, int]]:
        """Match a sampled bit grid against every entry in all four rotations.

        Args:
            grid: bits x bits array sampled from the image, oriented with its
                first row along the candidate's first edge
            max_bit_errors: Largest accepted Hamming distance

        Returns:
            Tuple of (marker_id, rotation, distance) where rotation k means
            np.rot90(grid, k) equals the dictionary pattern, or None if no
            entry is within tolerance
        """
        grid = np.asarray(grid, dtype=np.uint8)
        best_id, best_rotation, best_distance = -1, 0, max_bit_errors + 1

        for rotation in range(4):
            candidate = np.rot90(grid, rotation).ravel()
            distances = np.count_nonzero(self._table != candidate, axis=1)
            idx = int(np.argmin(distances))
            if distances[idx] < best_distance:
                best_id, best_rotation, best_distance = idx, rotation, int(distances[idx])

        if best_id < 0:
            return None
        return best_id, best_rotation, best_distance

    def rotated_table(self) -> np.ndarray:
        """(4, N, bits*bits) array; entry k holds every pattern turned by np.rot90(., k)."""
        n = self.marker_bits
        grids = self._table.reshape(-1, n, n)
        return np.stack([np.rot90(grids, k, axes=(1, 2)).reshape(len(self), -1) for k in range(4)])

    def min_distance(self) -> int:
        """Smallest Hamming distance between two different IDs over all four rotations."""
        if len(self) < 2:
            return self.marker_bits * self.marker_bits
        rotated = self.rotated_table()
        distances = np.count_nonzero(self._table[None, :, None, :] != rotated[:, None, :, :], axis=3)
        off_diagonal = ~np.eye(len(self), dtype=bool)
        return int(distances[:, off_diagonal].min())

    def min_self_distance(self) -> int:
        """Smallest Hamming distance between a pattern and its own 90, 180 or 270 degree turn."""
        if len(self) == 0:
            return self.marker_bits * self.marker_bits
        rotated = self.rotated_table()
        return int(np.count_nonzero(rotated[1:] != self._table[None], axis=2).min())

    @property
    def max_correction_bits(self) -> int:
        """Bit errors that can be corrected without ever confusing two codes or orientations."""
        return (min(self.min_distance(), self.min_self_distance()) - 1) // 2


DICTIONARY = MarkerDictionary(PACKED_6X6)
