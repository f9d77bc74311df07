import base64
import binascii
import gzip
import struct
import unittest
import zlib
from collections import namedtuple
from xml.etree import ElementTree

from tmxgrid import (
    GID_MASK,
    GID_TRANS_FLIPX,
    GID_TRANS_FLIPY,
    GID_TRANS_MASK,
    GID_TRANS_ROT,
    NIL_TILE,
    DecodedTile,
    InvalidDecodedDataLen,
    InvalidGID,
    TmxError,
    UnknownCompression,
    UnknownEncoding,
    decode_base64,
    decode_csv,
    decode_gid,
    decode_tiles,
    decode_xml_tiles,
    find_layer_tileset,
    reshape_data,
    split_gid,
    unpack_gids,
)

Tileset = namedtuple("Tileset", ["name", "firstgid"])


def pack(gids, compression=None):
    data = struct.pack("<%dL" % len(gids), *gids)
    if compression == "gzip":
        data = gzip.compress(data)
    elif compression == "zlib":
        data = zlib.compress(data)
    return base64.b64encode(data).decode("ascii")


class TestConstants(unittest.TestCase):
    def test_flip_bits(self):
        self.assertEqual(GID_TRANS_FLIPX, 0x80000000)
        self.assertEqual(GID_TRANS_FLIPY, 0x40000000)
        self.assertEqual(GID_TRANS_ROT, 0x20000000)
        self.assertEqual(GID_TRANS_MASK, 0xE0000000)

    def test_gid_mask(self):
        self.assertEqual(GID_MASK, 0x0FFFFFFF)


class TestSplitGid(unittest.TestCase):
    def test_no_flags(self):
        gid, flags = split_gid(42)
        self.assertEqual(gid, 42)
        self.assertEqual(flags, (False, False, False))

    def test_each_flag_is_independent(self):
        for bit, expected in (
            (GID_TRANS_FLIPX, (True, False, False)),
            (GID_TRANS_FLIPY, (False, True, False)),
            (GID_TRANS_ROT, (False, False, True)),
        ):
            gid, flags = split_gid(bit | 7)
            self.assertEqual(gid, 7)
            self.assertEqual(tuple(flags), expected)

    def test_all_flags(self):
        gid, flags = split_gid(GID_TRANS_MASK | 0x0ABCDEF)
        self.assertEqual(gid, 0x0ABCDEF)
        self.assertTrue(flags.flipped_horizontally)
        self.assertTrue(flags.flipped_vertically)
        self.assertTrue(flags.flipped_diagonally)

    def test_bare_gid_is_gid_without_flip_bits(self):
        for raw in (1, 0x10000000, 0x1FFFFFFF, 0xFFFFFFFF, 0xA0000005):
            gid, flags = split_gid(raw)
            self.assertEqual(gid, raw & ~GID_TRANS_MASK)
            self.assertEqual(flags.flipped_horizontally, bool(raw & GID_TRANS_FLIPX))
            self.assertEqual(flags.flipped_vertically, bool(raw & GID_TRANS_FLIPY))
            self.assertEqual(flags.flipped_diagonally, bool(raw & GID_TRANS_ROT))


class TestDecodeGid(unittest.TestCase):
    def setUp(self):
        self.tilesets = [Tileset("a", 0), Tileset("b", 10), Tileset("c", 25)]

    def test_zero_is_nil_tile(self):
        tile = decode_gid(0, self.tilesets)
        self.assertIs(tile, NIL_TILE)
        self.assertTrue(tile.nil)

    def test_nil_tile_is_a_value(self):
        self.assertEqual(DecodedTile(), NIL_TILE)
        self.assertTrue(DecodedTile().nil)

    def test_resolves_closest_tileset(self):
        expected = {9: ("a", 9), 10: ("b", 0), 24: ("b", 14), 25: ("c", 0)}
        for gid, (name, tile_id) in expected.items():
            tile = decode_gid(gid, self.tilesets)
            self.assertEqual(tile.tileset.name, name)
            self.assertEqual(tile.id, tile_id)
            self.assertFalse(tile.nil)

    def test_last_tileset_is_unbounded(self):
        tile = decode_gid(GID_MASK, self.tilesets)
        self.assertIs(tile.tileset, self.tilesets[2])
        self.assertEqual(tile.id, GID_MASK - 25)

    def test_flags_are_recorded(self):
        tile = decode_gid(GID_TRANS_FLIPX | GID_TRANS_ROT | 11, self.tilesets)
        self.assertIs(tile.tileset, self.tilesets[1])
        self.assertEqual(tile.id, 1)
        self.assertTrue(tile.flipped_horizontally)
        self.assertFalse(tile.flipped_vertically)
        self.assertTrue(tile.flipped_diagonally)
        self.assertEqual(tile.flags, (True, False, True))

    def test_gid_before_every_tileset_raises(self):
        tilesets = [Tileset("a", 5), Tileset("b", 10)]
        with self.assertRaises(InvalidGID) as cm:
            decode_gid(3, tilesets)
        self.assertEqual(cm.exception.gid, 3)

    def test_flipped_empty_gid_raises(self):
        with self.assertRaises(InvalidGID):
            decode_gid(GID_TRANS_FLIPY, [Tileset("a", 1)])

    def test_no_tilesets_raises(self):
        with self.assertRaises(InvalidGID):
            decode_gid(1, [])

    def test_order_of_tilesets_is_trusted(self):
        tilesets = [Tileset("b", 10), Tileset("a", 1)]
        tile = decode_gid(12, tilesets)
        self.assertEqual(tile.tileset.name, "a")
        self.assertEqual(tile.id, 11)

    def test_decode_tiles(self):
        tiles = decode_tiles([0, 1, 10], self.tilesets)
        self.assertEqual([t.tileset and t.tileset.name for t in tiles], [None, "a", "b"])

    def test_invalid_error_is_value_error(self):
        with self.assertRaises(ValueError):
            decode_gid(1, [Tileset("a", 2)])


class TestDecodeBase64(unittest.TestCase):
    raw = struct.pack("<4L", 1, 2, 3, 4)

    def test_uncompressed(self):
        text = base64.b64encode(self.raw).decode("ascii")
        self.assertEqual(decode_base64(text), self.raw)
        self.assertEqual(decode_base64(text, ""), self.raw)

    def test_surrounding_whitespace_is_ignored(self):
        text = "\n   " + base64.b64encode(self.raw).decode("ascii") + "  \n"
        self.assertEqual(decode_base64(text), self.raw)

    def test_gzip(self):
        text = base64.b64encode(gzip.compress(self.raw)).decode("ascii")
        self.assertEqual(decode_base64(text, "gzip"), self.raw)

    def test_zlib(self):
        text = base64.b64encode(zlib.compress(self.raw)).decode("ascii")
        self.assertEqual(decode_base64(text, "zlib"), self.raw)

    def test_unknown_compression(self):
        with self.assertRaises(UnknownCompression) as cm:
            decode_base64(pack([1]), "bar")
        self.assertEqual(cm.exception.compression, "bar")

    def test_bad_base64_is_not_wrapped(self):
        with self.assertRaises(binascii.Error):
            decode_base64("AQA")

    def test_invalid_character_is_not_dropped(self):
        with self.assertRaises(binascii.Error):
            decode_base64("AQ$$$$AAAA==")
        with self.assertRaises(binascii.Error):
            unpack_gids(1, 1, "AQ$$$$AAAA==", "base64")

    def test_inner_spaces_are_invalid(self):
        with self.assertRaises(binascii.Error):
            decode_base64("AQAA AA==")

    def test_line_breaks_are_ignored(self):
        text = base64.b64encode(self.raw).decode("ascii")
        wrapped = text[:8] + "\r\n" + text[8:16] + "\n" + text[16:]
        self.assertEqual(decode_base64(wrapped), self.raw)

    def test_corrupt_zlib_is_not_wrapped(self):
        with self.assertRaises(zlib.error):
            decode_base64(pack([1, 2, 3]), "zlib")

    def test_corrupt_gzip_is_not_wrapped(self):
        with self.assertRaises(OSError):
            decode_base64(pack([1, 2, 3]), "gzip")


class TestDecodeCsv(unittest.TestCase):
    def test_simple(self):
        self.assertEqual(decode_csv("1,2,3"), [1, 2, 3])

    def test_whitespace_and_newlines_are_dropped(self):
        self.assertEqual(decode_csv("\n1, 2,\r\n 3 ,\t4\n"), [1, 2, 3, 4])

    def test_large_gids(self):
        self.assertEqual(decode_csv("4294967295,2147483649"), [0xFFFFFFFF, 0x80000001])

    def test_out_of_range(self):
        with self.assertRaises(ValueError):
            decode_csv("4294967296")

    def test_empty_value(self):
        with self.assertRaises(ValueError):
            decode_csv("1,,2")

    def test_trailing_comma(self):
        with self.assertRaises(ValueError):
            decode_csv("1,2,")

    def test_letters_are_dropped(self):
        # only digits and commas are kept
        self.assertEqual(decode_csv("1a,b2"), [1, 2])


class TestDecodeXmlTiles(unittest.TestCase):
    def test_gids_in_order(self):
        node = ElementTree.fromstring(
            '<data><tile gid="3"/><tile/><tile gid="2147483649"/></data>'
        )
        self.assertEqual(decode_xml_tiles(node.findall("tile")), [3, 0, 0x80000001])

    def test_non_numeric_gid(self):
        node = ElementTree.fromstring('<data><tile gid="x"/></data>')
        with self.assertRaises(ValueError):
            decode_xml_tiles(node.findall("tile"))

    def test_out_of_range_gid(self):
        node = ElementTree.fromstring('<data><tile gid="4294967297"/></data>')
        with self.assertRaises(ValueError):
            decode_xml_tiles(node.findall("tile"))

    def test_negative_gid(self):
        node = ElementTree.fromstring('<data><tile gid="-1"/></data>')
        with self.assertRaises(ValueError):
            decode_xml_tiles(node.findall("tile"))

    def test_largest_gid(self):
        node = ElementTree.fromstring('<data><tile gid="4294967295"/></data>')
        self.assertEqual(decode_xml_tiles(node.findall("tile")), [0xFFFFFFFF])


class TestUnpackGids(unittest.TestCase):
    def test_base64_gzip_round_trip(self):
        text = pack([1, 2, 3, 4], "gzip")
        self.assertEqual(unpack_gids(2, 2, text, "base64", "gzip"), [1, 2, 3, 4])

    def test_base64_zlib_round_trip(self):
        text = pack([1, 2, 3, 4], "zlib")
        self.assertEqual(unpack_gids(2, 2, text, "base64", "zlib"), [1, 2, 3, 4])

    def test_base64_is_little_endian(self):
        text = base64.b64encode(bytes([1, 0, 0, 0, 0, 0, 0, 0x80])).decode("ascii")
        self.assertEqual(unpack_gids(2, 1, text, "base64"), [1, 0x80000000])

    def test_csv(self):
        self.assertEqual(unpack_gids(2, 2, "1,2,\n3,4", "csv"), [1, 2, 3, 4])

    def test_xml(self):
        self.assertEqual(unpack_gids(2, 1, encoding="", tiles=[5, 0]), [5, 0])
        self.assertEqual(unpack_gids(2, 1, encoding=None, tiles=[5, 0]), [5, 0])

    def test_compression_ignored_for_csv(self):
        self.assertEqual(unpack_gids(1, 1, "1", "csv", "gzip"), [1])

    def test_base64_length(self):
        for gids in ([1, 2, 3], [1, 2, 3, 4, 5]):
            with self.assertRaises(InvalidDecodedDataLen) as cm:
                unpack_gids(2, 2, pack(gids), "base64")
            self.assertEqual(cm.exception.expected, 16)
            self.assertEqual(cm.exception.actual, len(gids) * 4)

    def test_base64_partial_gid(self):
        text = base64.b64encode(b"\x01\x00\x00\x00\x02").decode("ascii")
        with self.assertRaises(InvalidDecodedDataLen):
            unpack_gids(1, 1, text, "base64")

    def test_csv_length(self):
        with self.assertRaises(InvalidDecodedDataLen):
            unpack_gids(2, 2, "1,2,3", "csv")
        with self.assertRaises(InvalidDecodedDataLen):
            unpack_gids(2, 2, "1,2,3,4,5", "csv")

    def test_xml_length(self):
        with self.assertRaises(InvalidDecodedDataLen) as cm:
            unpack_gids(2, 2, tiles=[1, 2, 3])
        self.assertEqual(cm.exception.expected, 4)
        self.assertEqual(cm.exception.actual, 3)
        with self.assertRaises(InvalidDecodedDataLen):
            unpack_gids(1, 1)

    def test_unknown_encoding(self):
        with self.assertRaises(UnknownEncoding) as cm:
            unpack_gids(1, 1, "1", "foo")
        self.assertEqual(cm.exception.encoding, "foo")

    def test_unknown_compression(self):
        with self.assertRaises(UnknownCompression):
            unpack_gids(2, 2, pack([1, 2, 3, 4]), "base64", "bar")

    def test_errors_share_a_base(self):
        for exc in (UnknownEncoding, UnknownCompression, InvalidDecodedDataLen, InvalidGID):
            self.assertTrue(issubclass(exc, TmxError))


class TestFindLayerTileset(unittest.TestCase):
    def setUp(self):
        self.a = Tileset("a", 1)
        self.b = Tileset("b", 10)

    def test_single_tileset(self):
        tile = DecodedTile(0, self.a)
        tileset, empty, multiple = find_layer_tileset([NIL_TILE, tile, tile, NIL_TILE])
        self.assertIs(tileset, self.a)
        self.assertFalse(empty)
        self.assertFalse(multiple)

    def test_empty(self):
        tileset, empty, multiple = find_layer_tileset([NIL_TILE] * 4)
        self.assertIsNone(tileset)
        self.assertTrue(empty)
        self.assertFalse(multiple)

    def test_no_cells(self):
        self.assertEqual(find_layer_tileset([]), (None, True, False))

    def test_multiple(self):
        tiles = [DecodedTile(0, self.a), DecodedTile(0, self.b)]
        tileset, empty, multiple = find_layer_tileset(tiles)
        self.assertFalse(empty)
        self.assertTrue(multiple)

    def test_stops_on_second_tileset(self):
        def tiles():
            yield DecodedTile(0, self.a)
            yield DecodedTile(0, self.b)
            raise AssertionError("scan did not stop")

        self.assertTrue(find_layer_tileset(tiles())[2])

    def test_flipped_tiles_share_tileset(self):
        tiles = [DecodedTile(0, self.a), DecodedTile(1, self.a, True, True, True)]
        self.assertEqual(find_layer_tileset(tiles), (self.a, False, False))


class TestReshapeData(unittest.TestCase):
    def test_rows(self):
        self.assertEqual(reshape_data([1, 2, 3, 4, 5, 6], 3), [[1, 2, 3], [4, 5, 6]])

    def test_no_tiles(self):
        self.assertEqual(reshape_data([], 0), [])
        self.assertEqual(reshape_data([], 3), [])

    def test_zero_width_with_tiles(self):
        with self.assertRaises(ValueError):
            reshape_data([1, 2], 0)
