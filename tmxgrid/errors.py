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

"""

__all__ = (
    "TmxError",
    "UnknownEncoding",
    "UnknownCompression",
    "InvalidDecodedDataLen",
    "InvalidGID",
    "InvalidPointsField",
)


class TmxError(Exception):
    """Base class for all errors raised while decoding a map."""

    pass


class UnknownEncoding(TmxError, ValueError):
    """Layer data declares an encoding that cannot be read."""

    def __init__(self, encoding: str) -> None:
        super().__init__("tmx: invalid encoding scheme {0!r}".format(encoding))
        self.encoding = encoding


class UnknownCompression(TmxError, ValueError):
    """Base64 layer data declares a compression that cannot be read."""

    def __init__(self, compression: str) -> None:
        super().__init__("tmx: invalid compression method {0!r}".format(compression))
        self.compression = compression


class InvalidDecodedDataLen(TmxError, ValueError):
    """Number of decoded cells does not match the map size."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            "tmx: invalid decoded data length, expected {0} got {1}".format(
                expected, actual
            )
        )
        self.expected = expected
        self.actual = actual


class InvalidGID(TmxError, ValueError):
    """GID is smaller than the firstgid of every tileset."""

    def __init__(self, gid: int) -> None:
        super().__init__("tmx: invalid GID {0}".format(gid))
        self.gid = gid


class InvalidPointsField(TmxError, ValueError):
    """Polygon or polyline points string is malformed."""

    def __init__(self, points: str) -> None:
        super().__init__("tmx: invalid points string {0!r}".format(points))
        self.points = points
