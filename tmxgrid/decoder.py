"""
Copyright (C) 2012-2023, Leif Theden <leif.theden@gmail.com>

This file is part of tmxgrid.

tmxgrid is free software: you can redistribute it and/or modify
it under the terms of the GNU Lesser General Public License as
published by the Free Software Foundation, either version 3 of the
License, or (at your option) any later version.

tmxgrid is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Lesser General Public License for more details.

You should have received a copy of the GNU Lesser General Public
License along with tmxgrid.  If not, see <https://www.gnu.org/licenses/>.

Decoding of tile layer data.

Layer data is turned into a flat list of raw GIDs, then every GID is
resolved against the tilesets of the map into a DecodedTile.

"""
from __future__ import annotations

import gzip
import logging
import re
import struct
import zlib
from base64 import b64decode
from collections import namedtuple
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple
from xml.etree import ElementTree

from .errors import (
    InvalidDecodedDataLen,
    InvalidGID,
    UnknownCompression,
    UnknownEncoding,
)

__all__ = (
    "GID_TRANS_FLIPX",
    "GID_TRANS_FLIPY",
    "GID_TRANS_ROT",
    "GID_TRANS_MASK",
    "GID_MASK",
    "NIL_TILE",
    "DecodedTile",
    "TileFlags",
    "decode_base64",
    "decode_csv",
    "decode_gid",
    "decode_tiles",
    "decode_xml_tiles",
    "find_layer_tileset",
    "reshape_data",
    "split_gid",
    "unpack_gids",
)

logger = logging.getLogger(__name__)

# Tiled gid flags
GID_TRANS_FLIPX = 1 << 31
GID_TRANS_FLIPY = 1 << 30
GID_TRANS_ROT = 1 << 29
GID_TRANS_MASK = GID_TRANS_FLIPX | GID_TRANS_FLIPY | GID_TRANS_ROT
GID_MASK = 0x0FFFFFFF

MAX_GID = 0xFFFFFFFF

flag_names = ("flipped_horizontally", "flipped_vertically", "flipped_diagonally")

TileFlags = namedtuple("TileFlags", flag_names)
empty_flags = TileFlags(False, False, False)

# anything that is not a digit or separator is noise in csv data
csv_noise = re.compile(r"[^0-9,]")
line_breaks = re.compile(r"[\r\n]")


@dataclass(frozen=True)
class DecodedTile:
    """A single cell of a tile layer.

    ``id`` is relative to the first gid of ``tileset``.  A tile without a
    tileset is the nil tile, an empty cell.

    """

    id: int = 0
    tileset: Optional[Any] = None
    flipped_horizontally: bool = False
    flipped_vertically: bool = False
    flipped_diagonally: bool = False

    @property
    def nil(self) -> bool:
        return self.tileset is None

    @property
    def flags(self) -> TileFlags:
        return TileFlags(
            self.flipped_horizontally,
            self.flipped_vertically,
            self.flipped_diagonally,
        )


NIL_TILE = DecodedTile()


def decode_base64(text: str, compression: Optional[str] = None) -> bytes:
    """Return the bytes of base64 layer data, decompressed if needed.

    Args:
        text (str): Base64 text, surrounding whitespace and line breaks are ignored.
        compression (Optional[str]): "gzip", "zlib", or empty for none.

    Returns:
        bytes: The decoded data.

    Raises:
        UnknownCompression: if the compression is not supported.
        binascii.Error: if the text is not valid base64.

    """
    if compression and compression not in ("gzip", "zlib"):
        logger.debug("layer compression %s is not supported", compression)
        raise UnknownCompression(compression)

    data = b64decode(line_breaks.sub("", text.strip()), validate=True)
    if compression == "gzip":
        data = gzip.decompress(data)
    elif compression == "zlib":
        data = zlib.decompress(data)
    return data


def parse_gid(value: str) -> int:
    """Parse a raw gid, which must fit in an unsigned 32 bit integer."""
    gid = int(value)
    if not 0 <= gid <= MAX_GID:
        raise ValueError("gid {0} does not fit in 32 bits".format(value))
    return gid


def decode_csv(text: str) -> List[int]:
    """Return gids from csv layer data.

    Whitespace and newlines between the values are dropped.

    Raises:
        ValueError: if a value is missing, not a number, or out of range.

    """
    return [parse_gid(token) for token in csv_noise.sub("", text).split(",")]


def decode_xml_tiles(nodes: Iterable[ElementTree.Element]) -> List[int]:
    """Return gids from <tile> elements, in document order.

    Raises:
        ValueError: if a gid is not a number, or out of range.

    """
    return [parse_gid(node.get("gid", "0")) for node in nodes]


def unpack_gids(
    width: int,
    height: int,
    text: str = "",
    encoding: Optional[str] = None,
    compression: Optional[str] = None,
    tiles: Optional[Sequence[int]] = None,
) -> List[int]:
    """Return all gids from encoded/compressed layer data

    Args:
        width (int): Width of the map, in tiles.
        height (int): Height of the map, in tiles.
        text (str): Layer data in text format.
        encoding (Optional[str]): Encoding used, empty for <tile> elements.
        compression (Optional[str]): Compression used by base64 data.
        tiles (Optional[Sequence[int]]): Gids read from <tile> elements.

    Returns:
        List[int]: One raw gid per cell, row by row.

    Raises:
        UnknownEncoding: if the encoding is not supported.
        InvalidDecodedDataLen: if the data does not cover width * height cells.

    """
    size = width * height

    if encoding == "base64":
        data = decode_base64(text, compression)
        if len(data) != size * 4:
            logger.debug(
                "base64 layer data is %d bytes, expected %d", len(data), size * 4
            )
            raise InvalidDecodedDataLen(size * 4, len(data))
        return list(struct.unpack("<%dL" % size, data))

    if encoding == "csv":
        gids = decode_csv(text)
    elif not encoding:
        gids = list(tiles or ())
    else:
        logger.debug("layer encoding %s is not supported", encoding)
        raise UnknownEncoding(encoding)

    if len(gids) != size:
        logger.debug("layer data has %d tiles, expected %d", len(gids), size)
        raise InvalidDecodedDataLen(size, len(gids))
    return gids


def split_gid(raw_gid: int) -> Tuple[int, TileFlags]:
    """Decode a GID from TMX data.

    Args:
        raw_gid (int): GID, as reported by Tiled.

    Returns:
        Tuple[int, TileFlags]: Tuple of the GID without flip bits, and TileFlags object

    """
    if raw_gid < GID_TRANS_ROT:
        return raw_gid, empty_flags
    return (
        raw_gid & ~GID_TRANS_MASK,
        TileFlags(
            raw_gid & GID_TRANS_FLIPX == GID_TRANS_FLIPX,
            raw_gid & GID_TRANS_FLIPY == GID_TRANS_FLIPY,
            raw_gid & GID_TRANS_ROT == GID_TRANS_ROT,
        ),
    )


def decode_gid(raw_gid: int, tilesets: Sequence[Any]) -> DecodedTile:
    """Resolve a raw GID to the tile of the tileset that owns it.

    Tilesets must be sorted by firstgid; the owner is the last tileset
    with a firstgid not greater than the GID.

    Args:
        raw_gid (int): GID, as reported by Tiled, flip bits included.
        tilesets (Sequence[TiledTileset]): Tilesets of the map.

    Returns:
        DecodedTile: NIL_TILE for gid 0, otherwise the resolved tile.

    Raises:
        InvalidGID: if the GID comes before every tileset.

    """
    if raw_gid == 0:
        return NIL_TILE

    gid, flags = split_gid(raw_gid)
    for tileset in reversed(tilesets):
        if tileset.firstgid <= gid:
            return DecodedTile(gid - tileset.firstgid, tileset, *flags)

    logger.debug("GID %d is not owned by any tileset", gid)
    raise InvalidGID(gid)


def decode_tiles(gids: Iterable[int], tilesets: Sequence[Any]) -> List[DecodedTile]:
    """Resolve every gid of a layer, stopping on the first invalid one."""
    return [decode_gid(gid, tilesets) for gid in gids]


def find_layer_tileset(
    tiles: Iterable[DecodedTile],
) -> Tuple[Optional[Any], bool, bool]:
    """Find the tileset shared by all tiles of a layer.

    Returns:
        Tuple[Optional[TiledTileset], bool, bool]: The tileset, if the layer
        is empty, and if the layer uses more than one tileset.  The tileset
        is meaningless when more than one is used.

    """
    tileset = None
    for tile in tiles:
        if tile.nil:
            continue
        if tileset is None:
            tileset = tile.tileset
        elif tile.tileset is not tileset:
            return tileset, False, True

    if tileset is None:
        return None, True, False
    return tileset, False, False


def reshape_data(
    tiles: List[Any],
    width: int,
) -> List[List[Any]]:
    """Change 1D list to 2d list

    Args:
        tiles (List[Any]): Flat list of cells.
        width (int): Width of each row, must be positive unless tiles is empty.

    Returns:
        List[List[Any]]: 2D nested list object.

    Raises:
        ValueError: if there are tiles and width is not positive.

    """
    if not tiles:
        return []
    if width < 1:
        raise ValueError("row width must be positive, got {0}".format(width))
    return [tiles[i : i + width] for i in range(0, len(tiles), width)]
