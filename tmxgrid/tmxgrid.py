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
from __future__ import annotations

import logging
import os
from collections import defaultdict, namedtuple
from concurrent.futures import ThreadPoolExecutor
from itertools import chain
from typing import Dict, Iterable, List, Optional, Tuple, Union
from xml.etree import ElementTree

from .decoder import (
    NIL_TILE,
    DecodedTile,
    decode_gid,
    decode_tiles,
    decode_xml_tiles,
    find_layer_tileset,
    reshape_data,
    unpack_gids,
)
from .errors import InvalidPointsField, TmxError

__all__ = (
    "Image",
    "Point",
    "TiledElement",
    "TiledMap",
    "TiledObject",
    "TiledObjectGroup",
    "TiledTileLayer",
    "TiledTileset",
    "convert_to_bool",
    "decode_points",
    "load_tmx",
    "parse_properties",
)

logger = logging.getLogger(__name__)

# error message format strings go here
duplicate_name_fmt = (
    'Cannot set user {} property on {} "{}"; Tiled property already exists.'
)

Point = namedtuple("Point", ["x", "y"])
Image = namedtuple("Image", ["source", "trans", "width", "height"])
MapPoint = Tuple[int, int, int]


def convert_to_bool(value: str) -> bool:
    """Convert a few common variations of "true" and "false" to boolean

    Args:
        value (str): String to test.

    Raises:
        ValueError: If `value` cannot be converted to a boolean.

    Returns:
        bool: The converted boolean.

    """
    value = str(value).strip()
    if value:
        value = value.lower()[0]
        if value in ("1", "y", "t"):
            return True
        if value in ("-", "0", "n", "f"):
            return False
    else:
        return False
    raise ValueError('cannot parse "{}" as bool'.format(value))


def decode_points(text: str) -> List[Point]:
    """Parse a polygon/polyline points string, ie. "0,0 16,0 16,16".

    Raises:
        InvalidPointsField: if a point is not a pair of coordinates.
        ValueError: if a coordinate is not an integer.

    """
    points = list()
    for pair in text.split(" "):
        coords = pair.split(",")
        if len(coords) != 2:
            raise InvalidPointsField(text)
        points.append(Point(int(coords[0]), int(coords[1])))
    return points


def read_image(node: Optional[ElementTree.Element]) -> Optional[Image]:
    if node is None:
        return None
    return Image(
        node.get("source"),
        node.get("trans", None),
        int(node.get("width", 0)),
        int(node.get("height", 0)),
    )


# used to change the unicode string returned from xml to
# proper python variable types.
types = defaultdict(lambda: str)

types.update(
    {
        "backgroundcolor": str,
        "color": str,
        "columns": int,
        "compression": str,
        "draworder": str,
        "encoding": str,
        "firstgid": int,
        "gid": int,
        "height": float,
        "id": int,
        "infinite": convert_to_bool,
        "margin": int,
        "name": str,
        "nextlayerid": int,
        "nextobjectid": int,
        "offsetx": int,
        "offsety": int,
        "opacity": float,
        "orientation": str,
        "renderorder": str,
        "rotation": float,
        "source": str,
        "spacing": int,
        "tilecount": int,
        "tiledversion": str,
        "tileheight": int,
        "tilewidth": int,
        "type": str,
        "version": str,
        "visible": convert_to_bool,
        "width": float,
        "x": float,
        "y": float,
    }
)

# casting for properties type
prop_type = {
    "bool": convert_to_bool,
    "color": str,
    "file": str,
    "float": float,
    "int": int,
    "object": int,
    "string": str,
}


def parse_properties(node: ElementTree.Element) -> Dict:
    """Parse a Tiled xml node and return a dict.

    Args:
        node (ElementTree.Element): Etree element to inspect.

    Returns:
        Dict: Dictionary of the properties, as set in the Tiled editor.

    """
    d = dict()
    for child in node.findall("properties"):
        for subnode in child.findall("property"):
            name = subnode.get("name")
            value = subnode.get("value")
            if value is None:
                # multi-line strings are stored as text
                value = subnode.text or ""
            cls = prop_type.get(subnode.get("type", "string"))
            if cls is None:
                logger.info(
                    "Type {} Not a built-in type. Defaulting to string-cast.".format(
                        subnode.get("type")
                    )
                )
                cls = str
            d[name] = cls(value)
    return d


class TiledElement:
    """Base class for all tmxgrid types."""

    allow_duplicate_names = False

    def __init__(self):
        self.properties = dict()

    def _cast_and_set_attributes_from_node_items(self, items) -> None:
        for key, value in items:
            casted_value = types[key](value)
            setattr(self, key, casted_value)

    def _contains_invalid_property_name(self, items) -> bool:
        if self.allow_duplicate_names:
            return False

        for k, v in items:
            if hasattr(self, k):
                msg = duplicate_name_fmt.format(
                    k, self.__class__.__name__, getattr(self, "name", None)
                )
                logger.error(msg)
                return True
        return False

    @staticmethod
    def _log_property_error_message() -> None:
        msg = "Some name are reserved for {0} objects and cannot be used."
        logger.error(msg)

    def _set_properties(self, node: ElementTree.Element) -> None:
        """Set properties from xml data

        Reads the xml attributes and Tiled "properties" from an XML node and fills
        in the values into the object's dictionary. Names will be checked to
        make sure that they do not conflict with reserved names.

        """
        self._cast_and_set_attributes_from_node_items(node.items())
        properties = parse_properties(node)
        if not self.allow_duplicate_names and self._contains_invalid_property_name(
            properties.items()
        ):
            self._log_property_error_message()
            raise ValueError(
                "Reserved names and duplicate names are not allowed. Please rename your property inside the .tmx file"
            )

        self.properties = properties

    def __getattr__(self, item):
        # properties may not exist yet while copying or unpickling
        if item == "properties":
            raise AttributeError(item)
        try:
            return self.properties[item]
        except KeyError:
            if self.properties.get("name", None):
                raise AttributeError(
                    "Element '{0}' has no property {1}".format(self.name, item)
                )
            else:
                raise AttributeError("Element has no property {0}".format(item))

    def __repr__(self):
        if hasattr(self, "id"):
            return '<{}[{}]: "{}">'.format(self.__class__.__name__, self.id, self.name)
        else:
            return '<{}: "{}">'.format(self.__class__.__name__, self.name)


class TiledMap(TiledElement):
    """Contains the tilesets, layers and objects from a Tiled .tmx map."""

    def __init__(
        self,
        filename: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Load new Tiled map from a .tmx file.

        Args:
            filename (Optional[str]): Filename of tiled map to load.
            max_workers (Optional[int]): Decode layers in a thread pool of this size.
            allow_duplicate_names (bool): Allow duplicates in objects' metadata.

        """
        TiledElement.__init__(self)
        self.filename = filename

        # optional keyword arguments checked here
        self.max_workers = kwargs.get("max_workers", None)

        # allow duplicate names to be parsed and loaded
        self.allow_duplicate_names = kwargs.get("allow_duplicate_names", False)

        self.layers = list()  # all layers in proper order
        self.tilesets = list()  # TiledTileset objects, sorted by firstgid
        self.layernames = dict()
        self.objects_by_id = dict()
        self.objects_by_name = dict()

        # defaults from the TMX specification
        self.version = "0.0"
        self.tiledversion = ""
        self.orientation = "orthogonal"
        self.renderorder = "right-down"
        self.width = 0  # width of map in tiles
        self.height = 0  # height of map in tiles
        self.tilewidth = 0  # width of a tile in pixels
        self.tileheight = 0  # height of a tile in pixels
        self.background_color = None
        self.nextobjectid = 0
        self.infinite = False

        if filename:
            self.parse_xml(ElementTree.parse(self.filename).getroot())

    @classmethod
    def from_xml_string(cls, xml_string: str, **kwargs) -> TiledMap:
        """Return a TiledMap object from a xml string.

        Args:
            xml_string (str): String containing xml data.

        Returns:
            TiledMap: The TiledMap from the xml string.

        """
        return cls(**kwargs).parse_xml(ElementTree.fromstring(xml_string))

    def __repr__(self):
        return '<{0}: "{1}">'.format(self.__class__.__name__, self.filename)

    # iterate over layers and objects in map
    def __iter__(self):
        return chain(self.layers, self.objects)

    def _set_properties(self, node: ElementTree.Element) -> None:
        TiledElement._set_properties(self, node)

        # map height and width must be int, but TiledElement.set_properties()
        # make a float by default, so recast as int here
        self.height = int(self.height)
        self.width = int(self.width)

    def parse_xml(self, node: ElementTree.Element) -> TiledMap:
        """Parse a map from ElementTree xml node.

        Args:
            node (ElementTree.Element): ElementTree xml node to parse.

        """
        self._set_properties(node)
        self.background_color = node.get("backgroundcolor", self.background_color)

        # tilesets must be known before tile objects and layer data are resolved
        for subnode in node.findall("tileset"):
            self.add_tileset(TiledTileset(self, subnode))

        for subnode in iter_layer_nodes(node):
            if subnode.tag == "layer":
                self.add_layer(TiledTileLayer(self, subnode))
            else:
                objectgroup = TiledObjectGroup(self, subnode)
                self.add_layer(objectgroup)
                for obj in objectgroup:
                    self.objects_by_id[obj.id] = obj
                    self.objects_by_name[obj.name] = obj

        self.decode_layers(self.max_workers)
        return self

    def decode_layers(self, max_workers: Optional[int] = None) -> None:
        """Decode the data of every tile layer.

        Either every layer is decoded, or the first error is raised and
        no layer is changed.

        Args:
            max_workers (Optional[int]): Decode layers in a thread pool of this size.

        Raises:
            TmxError: if the data of a layer is invalid.

        """
        layers = list(self.tile_layers)

        if max_workers:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = list(executor.map(self.decode_layer, layers))
        else:
            results = [self.decode_layer(layer) for layer in layers]

        for layer, tiles in zip(layers, results):
            layer.set_tiles(tiles)

    def decode_layer(self, layer: TiledTileLayer) -> List[DecodedTile]:
        """Return the decoded tiles of a layer, without changing it.

        Args:
            layer (TiledTileLayer): Layer of this map.

        Returns:
            List[DecodedTile]: One tile per cell, row by row.

        """
        gids = unpack_gids(
            self.width,
            self.height,
            text=layer.encoded_data,
            encoding=layer.encoding,
            compression=layer.compression,
            tiles=layer.xml_gids,
        )
        return decode_tiles(gids, self.tilesets)

    def get_tile(self, x: int, y: int, layer: int) -> DecodedTile:
        """Return the decoded tile for this location.

        Args:
            x (int): The x coordinate.
            y (int): The y coordinate.
            layer (int): The layer's number.

        Returns:
            DecodedTile: The tile, NIL_TILE if the cell is empty.

        Raises:
            ValueError: If coordinates are out of bounds.

        """
        if not (0 <= x < self.width and 0 <= y < self.height and layer >= 0):
            raise ValueError(
                "Tile coordinates and layers must be inside the map, were ({0}, {1}), layer={2}".format(
                    x, y, layer
                )
            )

        try:
            return self.layers[int(layer)].decoded_tiles[int(y) * self.width + int(x)]
        except (IndexError, AttributeError):
            msg = "Coords: ({0},{1}) in layer {2} is invalid"
            logger.debug(msg.format(x, y, layer))
            raise ValueError(msg.format(x, y, layer))

    def get_tile_properties(self, x: int, y: int, layer: int) -> Optional[Dict]:
        """Return the tileset data of the tile at this location.

        Returns:
            Optional[dict]: Dictionary of the tile data, or None.

        """
        tile = self.get_tile(x, y, layer)
        if tile.nil:
            return None
        return tile.tileset.tiles.get(tile.id)

    def get_tile_locations_by_tile(
        self, tileset: TiledTileset, tile_id: int
    ) -> Iterable[MapPoint]:
        """Search map for locations of a tile, ignoring flip flags.

        Note: Not a fast operation.  Cache results if used often.

        Returns:
            Iterable[MapPoint]: (int, int, int) tuples, where the layer is index of the visible tile layers.

        """
        for l in self.visible_tile_layers:
            for x, y, tile in self.layers[l].iter_data():
                if tile.tileset is tileset and tile.id == tile_id:
                    yield x, y, l

    def add_layer(self, layer: Union[TiledTileLayer, TiledObjectGroup]) -> None:
        """Add a layer to the map.

        Args:
            layer (Union[TiledTileLayer, TiledObjectGroup]): The layer.

        """
        assert isinstance(layer, (TiledTileLayer, TiledObjectGroup))

        self.layers.append(layer)
        self.layernames[layer.name] = layer

    def add_tileset(self, tileset: TiledTileset) -> None:
        """Add a tileset to the map.

        Tilesets are kept in the order they are added.  GIDs are resolved
        assuming they are sorted by firstgid, as Tiled writes them.

        """
        assert isinstance(tileset, TiledTileset)
        if self.tilesets and tileset.firstgid < self.tilesets[-1].firstgid:
            logger.warning(
                "Tileset %s has firstgid %d, lower than the previous tileset; "
                "tiles may resolve to the wrong tileset.",
                tileset.name,
                tileset.firstgid,
            )
        self.tilesets.append(tileset)

    def get_layer_by_name(self, name: str):
        """Return a layer by name.

        Args:
            name (str): The layer's name. Case-sensitive!

        Returns:
            The layer.

        Raises:
            ValueError: if layer by name does not exist

        """
        try:
            return self.layernames[name]
        except KeyError:
            msg = 'Layer "{0}" not found.'
            logger.debug(msg.format(name))
            raise ValueError(msg.format(name))

    def get_object_by_id(self, obj_id: int) -> TiledObject:
        """Find an object by the object id."""
        return self.objects_by_id[obj_id]

    def get_object_by_name(self, name: str) -> TiledObject:
        """Find an object by name, case-sensitive."""
        return self.objects_by_name[name]

    def get_tileset_from_gid(self, gid: int) -> TiledTileset:
        """Return tileset that owns the gid.

        Args:
            gid (int): GID of tile image, flip flags are ignored.

        Returns:
            TiledTileset: The tileset that owns the GID.

        Raises:
            ValueError: if the tileset for gid is not found

        """
        tile = decode_gid(gid, self.tilesets)
        if tile.nil:
            raise ValueError("Tileset not found")
        return tile.tileset

    @property
    def tile_layers(self) -> Iterable[TiledTileLayer]:
        """Returns iterator of all tile layers."""
        return (layer for layer in self.layers if isinstance(layer, TiledTileLayer))

    @property
    def objectgroups(self) -> Iterable[TiledObjectGroup]:
        """Returns iterator of all object groups."""
        return (layer for layer in self.layers if isinstance(layer, TiledObjectGroup))

    @property
    def objects(self) -> Iterable[TiledObject]:
        """Returns iterator of all the objects associated with the map."""
        return chain(*self.objectgroups)

    @property
    def visible_layers(self):
        """Returns iterator of Layer objects that are set "visible"."""
        return (l for l in self.layers if l.visible)

    @property
    def visible_tile_layers(self) -> Iterable[int]:
        """Return iterator of layer indexes that are set "visible"."""
        return (
            i
            for (i, l) in enumerate(self.layers)
            if l.visible and isinstance(l, TiledTileLayer)
        )


def iter_layer_nodes(node: ElementTree.Element) -> Iterable[ElementTree.Element]:
    """Yield layer and objectgroup nodes in document order, entering groups."""
    for child in node:
        if child.tag == "group":
            yield from iter_layer_nodes(child)
        elif child.tag in ("layer", "objectgroup"):
            yield child


class TiledTileset(TiledElement):
    """Represents a Tiled Tileset

    External tilesets are supported.

    """

    def __init__(self, parent, node) -> None:
        """Represents a Tiled Tileset

        Args:
            parent (TiledMap): Map that uses the tileset.
            node (ElementTree.Element): <tileset> node of the map.

        """
        TiledElement.__init__(self)
        self.parent = parent
        self.allow_duplicate_names = parent.allow_duplicate_names
        self.offset = (0, 0)

        # defaults from the specification
        self.firstgid = 0
        self.source = None
        self.name = None
        self.tilewidth = 0
        self.tileheight = 0
        self.spacing = 0
        self.margin = 0
        self.tilecount = 0
        self.columns = 0
        self.image = None
        self.tiles = dict()  # tile id to tile data, only for tiles listed in the tileset

        self.parse_xml(node)

    def parse_xml(self, node: ElementTree.Element) -> TiledTileset:
        """Parse a Tileset from ElementTree xml element.

        A bit of mangling is done here so that tilesets that have
        external TSX files appear the same as those that don't.

        Args:
            node (ElementTree.Element): Node to parse.

        Returns:
            TiledTileset:

        """
        # if true, then node references an external tileset
        source = node.get("source", None)
        if source:
            if source[-4:].lower() == ".tsx":

                # external tilesets don't save this, store it for later
                self.firstgid = int(node.get("firstgid"))

                # we need to mangle the path - tiled stores relative paths
                dirname = os.path.dirname(self.parent.filename or "")
                path = os.path.abspath(os.path.join(dirname, source))
                if not os.path.exists(path):
                    msg = "Cannot find tileset file {0} from {1}, should be at {2}"
                    logger.error(msg.format(source, self.parent.filename, path))
                    raise TmxError(msg.format(source, self.parent.filename, path))

                try:
                    node = ElementTree.parse(path).getroot()
                except IOError as io:
                    msg = "Error loading external tileset: {0}"
                    logger.error(msg.format(path))
                    raise TmxError(msg.format(path)) from io
            else:
                msg = "Found external tileset, but cannot handle type: {0}"
                logger.error(msg.format(source))
                raise TmxError(msg.format(source))

        self._set_properties(node)
        self.source = source

        for child in node.iter("tile"):
            tile_id = int(child.get("id"))
            image = read_image(child.find("image"))
            # images are listed as relative to the .tsx file, not the .tmx file:
            if source and image is not None and image.source:
                image = image._replace(
                    source=os.path.join(os.path.dirname(source), image.source)
                )
            self.tiles[tile_id] = {
                "id": tile_id,
                "type": child.get("type", None),
                "image": image,
                "properties": parse_properties(child),
            }

        # handle the optional 'tileoffset' node
        offset = node.find("tileoffset")
        if offset is not None:
            self.offset = (int(offset.get("x", 0)), int(offset.get("y", 0)))

        self.image = read_image(node.find("image"))
        if source and self.image is not None and self.image.source:
            self.image = self.image._replace(
                source=os.path.join(os.path.dirname(source), self.image.source)
            )

        return self


class TiledTileLayer(TiledElement):
    """Represents a TileLayer.

    The cells are DecodedTile objects, available once the map decoded
    its layers.  ``tileset`` is set when every tile of the layer comes
    from the same tileset, and ``empty`` when the layer has no tiles.

    """

    def __init__(self, parent, node) -> None:
        TiledElement.__init__(self)
        self.parent = parent
        self.allow_duplicate_names = parent.allow_duplicate_names
        self.decoded_tiles = list()
        self.data = list()
        self.tileset = None
        self.empty = False

        # raw <data> content, decoded by the map
        self.encoding = None
        self.compression = None
        self.encoded_data = ""
        self.xml_gids = list()

        # defaults from the specification
        self.name = None
        self.width = 0
        self.height = 0
        self.opacity = 1.0
        self.visible = True
        self.offsetx = 0
        self.offsety = 0

        self.parse_xml(node)

    def __iter__(self):
        return self.iter_data()

    def iter_data(self) -> Iterable[Tuple[int, int, DecodedTile]]:
        """Yields X, Y, DecodedTile tuples for each cell in the layer."""
        for y, row in enumerate(self.data):
            for x, tile in enumerate(row):
                yield x, y, tile

    def tiles(self) -> Iterable[Tuple[int, int, DecodedTile]]:
        """Yields X, Y, DecodedTile tuples for each non-empty cell."""
        for x, y, tile in self.iter_data():
            if not tile.nil:
                yield x, y, tile

    def set_tiles(self, tiles: List[DecodedTile]) -> None:
        """Store decoded tiles and find the tileset used by the layer."""
        self.decoded_tiles = tiles
        self.data = reshape_data(tiles, self.parent.width)

        tileset, empty, multiple = find_layer_tileset(tiles)
        if multiple:
            self.tileset, self.empty = None, False
        else:
            self.tileset, self.empty = tileset, empty

    def _set_properties(self, node) -> None:
        TiledElement._set_properties(self, node)

        # layer height and width must be int, but TiledElement.set_properties()
        # make a float by default, so recast as int here
        self.height = int(self.height)
        self.width = int(self.width)

    def parse_xml(self, node: ElementTree.Element) -> TiledTileLayer:
        """Parse a Tile Layer from ElementTree xml node.

        Only the <data> node is read here; the map decodes it once all
        layers are known.

        Args:
            node (ElementTree.Element): Node to parse.

        Returns:
            TiledTileLayer: The parsed tile layer.

        """
        self._set_properties(node)
        data_node = node.find("data")
        if data_node is None:
            return self

        if data_node.findall("chunk"):
            msg = "TMX map size: infinite is not supported."
            logger.error(msg)
            raise TmxError(msg)

        self.encoding = data_node.get("encoding", None)
        self.compression = data_node.get("compression", None)
        self.encoded_data = data_node.text or ""
        if not self.encoding:
            self.xml_gids = decode_xml_tiles(data_node.findall("tile"))
        return self


class TiledObjectGroup(TiledElement, list):
    """Represents a Tiled ObjectGroup

    Supports any operation of a normal list.

    """

    def __init__(self, parent, node) -> None:
        TiledElement.__init__(self)
        self.parent = parent
        self.allow_duplicate_names = parent.allow_duplicate_names

        # defaults from the specification
        self.name = None
        self.color = None
        self.opacity = 1
        self.visible = 1
        self.offsetx = 0
        self.offsety = 0
        self.draworder = "topdown"

        self.parse_xml(node)

    def parse_xml(self, node: ElementTree.Element) -> TiledObjectGroup:
        """Parse an Object Group from ElementTree xml node

        Args:
            node (ElementTree.Element): Node to parse.

        """
        self._set_properties(node)
        self.extend(TiledObject(self.parent, child) for child in node.findall("object"))

        return self


class TiledObject(TiledElement):
    """Represents any Tiled Object.

    Supported types: Box, Ellipse, Tile Object, Polyline, Polygon.

    """

    def __init__(self, parent, node) -> None:
        TiledElement.__init__(self)
        self.parent = parent
        self.allow_duplicate_names = parent.allow_duplicate_names

        # defaults from the specification
        self.id = 0
        self.name = None
        self.type = None
        self.x = 0
        self.y = 0
        self.width = 0
        self.height = 0
        self.rotation = 0
        self.gid = 0
        self.tile = NIL_TILE
        self.visible = 1
        self.closed = True
        self.points = None
        self.template = None

        self.parse_xml(node)

    def parse_xml(self, node: ElementTree.Element) -> TiledObject:
        """Parse an Object from ElementTree xml node.

        Args:
            node (ElementTree.Element): The node to be parsed.

        Returns:
            TiledObject: The parsed xml node.

        """
        self._set_properties(node)

        # tile objects use the same gid layout as layer data
        if self.gid:
            self.tile = decode_gid(self.gid, self.parent.tilesets)

        polygon = node.find("polygon")
        if polygon is not None:
            self.points = decode_points(polygon.get("points"))
            self.closed = True

        polyline = node.find("polyline")
        if polyline is not None:
            self.points = decode_points(polyline.get("points"))
            self.closed = False

        return self


def load_tmx(source, **kwargs) -> TiledMap:
    """Load a map from a filename or a file object.

    Args:
        source: Path of the .tmx file, or an open file.
        **kwargs: Passed to TiledMap.

    Returns:
        TiledMap: The loaded map.

    """
    if isinstance(source, (str, os.PathLike)):
        return TiledMap(os.fspath(source), **kwargs)

    tiled_map = TiledMap(**kwargs)
    tiled_map.filename = getattr(source, "name", None)
    return tiled_map.parse_xml(ElementTree.parse(source).getroot())
