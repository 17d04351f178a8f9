"""Tests for the KML reader & writer and KMZ archives."""

import zipfile

import pytest
from errors import DecodeError, EncodeError, OpenError, WriteError
from kml_format import (
    Document, Folder, HotSpot, Icon, IconStyle, KmlDocument, KmlPoint, LabelStyle,
    LineString, LineStyle, ListStyle, MultiGeometry, Pair, Placemark, Style, StyleMap,
    KMZ_ENTRY_NAME, decode_kml, encode_kml, line_coordinates, load_kml, parse_coordinates,
    parse_line, position_coordinates, read_first_entry, save_kml, write_single_entry,
)
from models import Polyline, Position


TRAIL_KML = b"""\
<?xml version="1.0" encoding="UTF-8"?>
<kml xmlns="http://www.opengis.net/kml/2.2">
  <Document>
    <name>Lakeland</name>
    <description>Twelve legs</description>
    <visibility>1</visibility>
    <open>1</open>
    <Style id="red">
      <LineStyle>
        <color>961400FF</color>
        <width>4</width>
      </LineStyle>
      <IconStyle>
        <color>ff00ffff</color>
        <scale>1.1</scale>
        <Icon><href>http://maps.google.com/mapfiles/kml/pushpin/ylw-pushpin.png</href></Icon>
        <hotSpot x="20" y="2" xunits="pixels" yunits="pixels"/>
      </IconStyle>
      <LabelStyle><scale>0.8</scale></LabelStyle>
      <ListStyle><scale>1</scale><ItemIcon><href>icon.png</href></ItemIcon></ListStyle>
    </Style>
    <StyleMap id="pin">
      <Pair><key>normal</key><styleUrl>#red</styleUrl></Pair>
      <Pair><key>highlight</key><styleUrl>#red</styleUrl></Pair>
    </StyleMap>
    <Folder>
      <name>Waypoints</name>
      <description></description>
      <visibility>1</visibility>
      <open>0</open>
      <Placemark>
        <name>Helvellyn</name>
        <description>Summit</description>
        <visibility>1</visibility>
        <open>0</open>
        <Point>
          <coordinates>-3.08860,54.46090,978</coordinates>
        </Point>
      </Placemark>
      <Folder>
        <name>Routes</name>
        <Placemark>
          <name>Leg 1</name>
          <styleUrl>#red</styleUrl>
          <LineString>
            <extrude>true</extrude>
            <tessellate>1</tessellate>
            <altitudeMode>clampToGround</altitudeMode>
            <coordinates>
              -3.00000,54.50000,150
              -3.04000,54.48000,300
            </coordinates>
          </LineString>
        </Placemark>
        <Placemark>
          <name>Leg 2</name>
          <MultiGeometry>
            <LineString><coordinates>1,2,0 3,4,0</coordinates></LineString>
            <LineString><coordinates>5,6,0 7,8,0 9,10,0</coordinates></LineString>
          </MultiGeometry>
        </Placemark>
      </Folder>
    </Folder>
  </Document>
</kml>
"""


class TestCoordinates:
    """"lon,lat,ele" text ⇄ Position."""

    def test_longitude_comes_first(self):
        pos = parse_coordinates("-3.12345,54.5,100")
        assert pos == Position(lat=54.5, lon=-3.12345, ele=100)

    def test_encode_fixed_precision(self):
        assert position_coordinates(Position(54.123456, -3.1, 99.6)) == "-3.10000,54.12346,100"

    def test_line_text(self):
        pl = Polyline([Position(54.5, -3.0, 150), Position(54.48, -3.04, 300)])
        text = line_coordinates(pl)
        assert text == "-3.00000,54.50000,150 -3.04000,54.48000,300"
        assert parse_line(text) == pl

    def test_round_trip_keeps_axes(self):
        pos = Position(54.123456789, -3.987654321, 1234.4)
        back = parse_coordinates(position_coordinates(pos))
        assert abs(back.lat - pos.lat) <= 1e-5
        assert abs(back.lon - pos.lon) <= 1e-5
        assert abs(back.ele - pos.ele) <= 1

    def test_whitespace_between_points(self):
        pl = parse_line("\n  1,2,3\n\t4,5,6  \n")
        assert list(pl) == [Position(2, 1, 3), Position(5, 4, 6)]

    def test_missing_elevation_is_zero(self):
        assert parse_coordinates("1.5,2.5") == Position(2.5, 1.5, 0)

    def test_malformed_number_reads_as_zero(self, log_messages):
        assert parse_coordinates("east,54.5,100") == Position(54.5, 0.0, 100)
        assert any("east" in m for m in log_messages)

    def test_empty_line(self):
        assert len(parse_line("   ")) == 0


class TestDecode:
    """Parse KML bytes into a KmlDocument."""

    def test_document(self):
        doc = decode_kml(TRAIL_KML)
        assert doc.xmlns == "http://www.opengis.net/kml/2.2"
        d = doc.document
        assert d.name == "Lakeland"
        assert d.description == "Twelve legs"
        assert (d.visibility, d.open) == (1, 1)
        assert len(d.folders) == 1
        assert d.folders[0].folders[0].name == "Routes"

    def test_styles(self):
        style = decode_kml(TRAIL_KML).document.styles[0]
        assert style.id == "red"
        assert style.line_style == LineStyle("961400FF", 4.0)
        assert style.icon_style.scale == pytest.approx(1.1)
        assert style.icon_style.icon.href.endswith("ylw-pushpin.png")
        assert style.icon_style.hot_spot == HotSpot(20, 2, "pixels", "pixels")
        assert style.label_style == LabelStyle("", 0.8)
        assert style.list_style == ListStyle(1.0, Icon("icon.png"))

    def test_style_map(self):
        style_map = decode_kml(TRAIL_KML).document.style_maps[0]
        assert style_map.id == "pin"
        assert style_map.pairs == [Pair("normal", "#red"), Pair("highlight", "#red")]

    def test_point_placemark(self):
        pm = decode_kml(TRAIL_KML).document.folders[0].placemarks[0]
        assert pm.name == "Helvellyn"
        assert pm.get_point().position() == Position(54.4609, -3.0886, 978)
        assert pm.get_line_string() is None

    def test_line_string_placemark(self):
        pm = decode_kml(TRAIL_KML).document.folders[0].folders[0].placemarks[0]
        ls = pm.get_line_string()
        assert pm.style_url == "#red"
        assert ls.extrude and ls.tessellate
        assert ls.altitude_mode == "clampToGround"
        assert list(ls.line()) == [Position(54.5, -3.0, 150), Position(54.48, -3.04, 300)]

    def test_multi_geometry_returns_first_line(self):
        pm = decode_kml(TRAIL_KML).document.folders[0].folders[0].placemarks[1]
        assert isinstance(pm.geometry, MultiGeometry)
        assert len(pm.geometry.line_strings) == 2
        assert list(pm.get_line_string().line()) == [Position(2, 1, 0), Position(4, 3, 0)]

    def test_direct_line_string_wins_over_multi_geometry(self, log_messages):
        kml = b"""<kml><Document><Folder><Placemark>
            <MultiGeometry><LineString><coordinates>1,1,0</coordinates></LineString></MultiGeometry>
            <LineString><coordinates>2,2,0 3,3,0</coordinates></LineString>
        </Placemark></Folder></Document></kml>"""
        pm = decode_kml(kml).document.folders[0].placemarks[0]
        assert isinstance(pm.geometry, LineString)
        assert len(pm.get_line_string().line()) == 2
        assert log_messages

    def test_empty_multi_geometry(self):
        assert Placemark(geometry=MultiGeometry()).get_line_string() is None
        assert Placemark().get_line_string() is None

    def test_iter_placemarks_walks_nested_folders(self):
        names = [pm.name for pm in decode_kml(TRAIL_KML).document.iter_placemarks()]
        assert names == ["Helvellyn", "Leg 1", "Leg 2"]

    def test_document_level_placemarks(self):
        kml = b"<kml><Document><Placemark><name>Top</name></Placemark></Document></kml>"
        doc = decode_kml(kml).document
        assert [pm.name for pm in doc.iter_placemarks()] == ["Top"]

    def test_missing_document(self):
        doc = decode_kml(b"<kml/>")
        assert doc.xmlns == ""
        assert doc.document == Document()

    def test_malformed_xml(self):
        with pytest.raises(DecodeError, match="decoding kml"):
            decode_kml(b"<kml><Document>")

    def test_wrong_root(self):
        with pytest.raises(DecodeError, match="unexpected root"):
            decode_kml(b"<gpx/>")

    def test_bad_visibility(self):
        with pytest.raises(DecodeError):
            decode_kml(b"<kml><Document><visibility>yes</visibility></Document></kml>")


class TestEncode:
    """Serialize with fixed precision and tab indentation."""

    def test_header_and_layout(self):
        out = encode_kml(decode_kml(TRAIL_KML)).decode("utf-8")
        assert out.startswith('<?xml version="1.0" encoding="UTF-8"?>\n'
                              '<kml xmlns="http://www.opengis.net/kml/2.2">\n'
                              '\t<Document>\n'
                              '\t\t<name>Lakeland</name>\n')
        assert "\t\t\t<LineStyle>\n\t\t\t\t<color>961400FF</color>\n\t\t\t\t<width>4.0</width>" in out
        assert "<scale>1.1</scale>" in out
        assert "<scale>0.8</scale>" in out
        assert '<hotSpot x="20" y="2" xunits="pixels" yunits="pixels"/>' in out

    def test_line_string_fields(self):
        pm = Placemark(name="Leg", geometry=LineString.from_line(
            Polyline([Position(54.5, -3.0, 150.4), Position(54.48, -3.04, 299.5)])))
        doc = KmlDocument(document=Document(folders=[Folder(placemarks=[pm])]))
        out = encode_kml(doc).decode("utf-8")
        assert "<extrude>true</extrude>" in out
        assert "<tessellate>true</tessellate>" in out
        assert "<altitudeMode>clampToGround</altitudeMode>" in out
        assert "<coordinates>-3.00000,54.50000,150 -3.04000,54.48000,300</coordinates>" in out

    def test_empty_document_name_omitted(self):
        out = encode_kml(KmlDocument()).decode("utf-8")
        assert "<name" not in out
        assert "<visibility>0</visibility>" in out

    def test_round_trip(self):
        doc = decode_kml(TRAIL_KML)
        again = decode_kml(encode_kml(doc))
        assert again.document.styles == doc.document.styles
        assert again.document.style_maps == doc.document.style_maps
        before = [pm.geometry for pm in doc.document.iter_placemarks()]
        after = [pm.geometry for pm in again.document.iter_placemarks()]
        assert [type(g) for g in after] == [type(g) for g in before]
        assert [pm.name for pm in again.document.iter_placemarks()] == ["Helvellyn", "Leg 1", "Leg 2"]

    def test_full_style_round_trip(self):
        style = Style(
            id="s",
            line_style=LineStyle("ff0000ff", 2.5),
            icon_style=IconStyle("ffffffff", 1.3, Icon("a.png"), HotSpot(0.5, 0.5, "fraction", "fraction")),
            label_style=LabelStyle("ff00ff00", 1.0),
            list_style=ListStyle(1.0, None),
        )
        doc = KmlDocument(document=Document(styles=[style], style_maps=[
            StyleMap("m", [Pair("normal", "#s")])]))
        assert decode_kml(encode_kml(doc)).document.styles == [style]

    def test_unknown_geometry_raises_encode_error(self):
        doc = KmlDocument(document=Document(placemarks=[Placemark(geometry="1,2,3")]))
        with pytest.raises(EncodeError, match="encoding kml"):
            encode_kml(doc)


def _sample_doc():
    line = Polyline([Position(54.5, -3.0, 150), Position(54.48, -3.04, 300), Position(54.46, -3.09, 978)])
    return KmlDocument(document=Document(
        name="Sample",
        visibility=1,
        folders=[Folder(name="Routes", placemarks=[
            Placemark(name="Leg 1", geometry=LineString.from_line(line)),
            Placemark(name="Top", geometry=KmlPoint.from_position(Position(54.4609, -3.0886, 978))),
        ])],
    ))


def _patch_central_header(path, offset, value):
    """Overwrite a 2-byte field of the archive's central directory entry."""
    data = bytearray(path.read_bytes())
    at = data.rindex(b"PK\x01\x02") + offset
    data[at:at + 2] = value.to_bytes(2, "little")
    path.write_bytes(bytes(data))


class TestFiles:
    """load_kml / save_kml, plain and zipped."""

    def test_kml_round_trip(self, tmp_path):
        path = tmp_path / "a" / "trail.kml"
        save_kml(_sample_doc(), str(path))
        assert path.read_bytes().startswith(b'<?xml version="1.0" encoding="UTF-8"?>')
        assert load_kml(str(path)) == _sample_doc()

    def test_kmz_single_entry(self, tmp_path):
        path = tmp_path / "out" / "trail.kmz"
        save_kml(_sample_doc(), str(path))
        with zipfile.ZipFile(path) as archive:
            assert archive.namelist() == [KMZ_ENTRY_NAME]
            assert archive.read(KMZ_ENTRY_NAME).startswith(b"<?xml")

    def test_kmz_round_trip_geometry(self, tmp_path):
        path = tmp_path / "trail.kmz"
        original = _sample_doc()
        save_kml(original, str(path))
        loaded = load_kml(str(path))
        before = original.document.folders[0].placemarks
        after = loaded.document.folders[0].placemarks
        assert after[0].get_line_string().line() == before[0].get_line_string().line()
        assert after[1].get_point().position() == before[1].get_point().position()

    def test_kmz_extension_is_case_insensitive(self, tmp_path):
        path = tmp_path / "TRAIL.KMZ"
        save_kml(_sample_doc(), str(path))
        assert zipfile.is_zipfile(path)
        assert load_kml(str(path)).document.name == "Sample"

    def test_reads_first_entry_only(self, tmp_path, log_messages):
        path = tmp_path / "multi.kmz"
        with zipfile.ZipFile(path, "w") as archive:
            archive.writestr("first.kml", encode_kml(_sample_doc()))
            archive.writestr("second.kml", b"not xml")
        assert load_kml(str(path)).document.name == "Sample"
        assert any("2 entries" in m for m in log_messages)

    def test_write_and_read_single_entry(self, tmp_path):
        path = tmp_path / "x.zip"
        write_single_entry(str(path), "doc.kml", b"payload")
        assert read_first_entry(str(path)) == b"payload"

    def test_empty_archive(self, tmp_path):
        path = tmp_path / "empty.kmz"
        zipfile.ZipFile(path, "w").close()
        with pytest.raises(OpenError, match="no entries"):
            load_kml(str(path))

    def test_not_an_archive(self, tmp_path):
        path = tmp_path / "fake.kmz"
        path.write_bytes(b"<kml/>")
        with pytest.raises(OpenError, match="opening archive"):
            load_kml(str(path))

    def test_encrypted_entry(self, tmp_path):
        path = tmp_path / "locked.kmz"
        write_single_entry(str(path), KMZ_ENTRY_NAME, encode_kml(_sample_doc()))
        _patch_central_header(path, 8, 0x1)
        with pytest.raises(OpenError, match="unzipping 'doc.kml'"):
            load_kml(str(path))

    def test_unsupported_compression(self, tmp_path):
        path = tmp_path / "odd.kmz"
        write_single_entry(str(path), KMZ_ENTRY_NAME, encode_kml(_sample_doc()))
        _patch_central_header(path, 10, 99)
        with pytest.raises(OpenError, match="unzipping"):
            read_first_entry(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(OpenError):
            load_kml(str(tmp_path / "missing.kml"))
        with pytest.raises(OpenError):
            load_kml(str(tmp_path / "missing.kmz"))

    def test_bad_xml_inside_archive(self, tmp_path):
        path = tmp_path / "bad.kmz"
        write_single_entry(str(path), "doc.kml", b"<kml><Document>")
        with pytest.raises(DecodeError) as exc:
            load_kml(str(path))
        assert exc.value.path == str(path)

    def test_encode_error_leaves_no_archive(self, tmp_path):
        path = tmp_path / "bad.kmz"
        doc = KmlDocument(document=Document(placemarks=[Placemark(geometry=42)]))
        with pytest.raises(EncodeError):
            save_kml(doc, str(path))
        assert not path.exists()

    def test_unwritable_destination(self, tmp_path):
        path = tmp_path / "dir.kmz"
        path.mkdir()
        with pytest.raises(WriteError):
            save_kml(_sample_doc(), str(path))
