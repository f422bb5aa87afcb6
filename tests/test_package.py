"""
Tests for loading, XML part handling and repacking of packages.
"""

import io
import unittest
import zipfile
from unittest.mock import patch

from lxml import etree

import package
from errors import CorruptPackageError
from helpers import MAIN_NS, build_xlsx, make_parts, make_xlsx, read_parts


class TestLoadPackage(unittest.TestCase):
    def test_load_exposes_every_part(self):
        parts = make_parts(sheets=(False, True))
        pkg = package.load_package(build_xlsx(parts))
        self.assertEqual(pkg.names, list(parts))
        for name, data in parts.items():
            self.assertEqual(pkg.read(name), data)

    def test_non_zip_is_corrupt(self):
        for data in (b"\x00\x00\x00\x00", b"", b"not a zip file at all"):
            with self.subTest(data=data):
                with self.assertRaises(CorruptPackageError) as ctx:
                    package.load_package(data)
                self.assertIn("corrupted or encrypted", str(ctx.exception))

    def test_truncated_zip_is_corrupt(self):
        data = make_xlsx()
        with self.assertRaises(CorruptPackageError):
            package.load_package(data[: len(data) // 2])

    def test_unexpected_zip_failures_are_corrupt(self):
        data = make_xlsx()
        for error in (ValueError("negative seek value -1"), OSError("bad central directory")):
            with self.subTest(error=error):
                with patch.object(package.zipfile, "ZipFile", side_effect=error):
                    with self.assertRaises(CorruptPackageError) as ctx:
                        package.load_package(data)
                self.assertIs(ctx.exception.__cause__, error)

    def test_iter_parts_filters_prefix_and_suffix(self):
        pkg = package.load_package(make_xlsx(sheets=(False, False)))
        self.assertEqual(
            list(pkg.iter_parts("xl/worksheets/", ".xml")),
            ["xl/worksheets/sheet1.xml", "xl/worksheets/sheet2.xml"],
        )


class TestSerializePackage(unittest.TestCase):
    def test_round_trip_keeps_content_and_order(self):
        parts = make_parts(sheets=(True, False))
        out = package.serialize_package(package.load_package(build_xlsx(parts)))
        self.assertEqual(read_parts(out), parts)
        with zipfile.ZipFile(io.BytesIO(out)) as zf:
            self.assertEqual(zf.namelist(), list(parts))

    def test_output_is_deflated(self):
        out = package.serialize_package(package.load_package(make_xlsx()))
        with zipfile.ZipFile(io.BytesIO(out)) as zf:
            for info in zf.infolist():
                self.assertEqual(info.compress_type, zipfile.ZIP_DEFLATED)

    def test_stored_input_is_recompressed(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as zf:
            zf.writestr("xl/workbook.xml", b"<workbook/>")
        out = package.serialize_package(package.load_package(buffer.getvalue()))
        with zipfile.ZipFile(io.BytesIO(out)) as zf:
            self.assertEqual(zf.getinfo("xl/workbook.xml").compress_type, zipfile.ZIP_DEFLATED)
            self.assertEqual(zf.read("xl/workbook.xml"), b"<workbook/>")

    def test_timestamps_preserved(self):
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr(zipfile.ZipInfo("a.xml", date_time=(2001, 2, 3, 4, 5, 6)), b"<a/>")
        out = package.serialize_package(package.load_package(buffer.getvalue()))
        with zipfile.ZipFile(io.BytesIO(out)) as zf:
            self.assertEqual(zf.getinfo("a.xml").date_time, (2001, 2, 3, 4, 5, 6))

    def test_write_adds_new_part_at_end(self):
        pkg = package.load_package(make_xlsx(app=None))
        pkg.write("docProps/app.xml", b"<Properties/>")
        out = read_parts(package.serialize_package(pkg))
        self.assertEqual(list(out)[-1], "docProps/app.xml")
        self.assertEqual(out["docProps/app.xml"], b"<Properties/>")
        self.assertEqual(pkg.replaced, ["docProps/app.xml"])


class TestXmlPart(unittest.TestCase):
    def test_find_by_local_name_ignores_prefix(self):
        data = (
            f'<x:workbook xmlns:x="{MAIN_NS}"><x:workbookPr/>'
            f'<x:workbookProtection lockStructure="1"/></x:workbook>'
        ).encode()
        part = package.XmlPart.parse("xl/workbook.xml", data)
        elem = part.find_local("workbookProtection")
        self.assertIsNotNone(elem)
        self.assertEqual(elem.prefix, "x")
        self.assertEqual(part.namespaces, {"x": MAIN_NS})

    def test_find_missing_returns_none(self):
        part = package.XmlPart.parse("a.xml", b"<root><child/></root>")
        self.assertIsNone(part.find_local("other"))

    def test_comments_are_skipped(self):
        part = package.XmlPart.parse("a.xml", b"<root><!-- note --><child/></root>")
        self.assertEqual([etree.QName(e).localname for e in part.iter_local("child")], ["child"])

    def test_remove_local_counts_and_removes_all(self):
        part = package.XmlPart.parse("a.xml", b"<root><p/><q/><p/></root>")
        self.assertEqual(part.remove_local("p"), 2)
        self.assertEqual(part.remove_local("p"), 0)
        self.assertEqual([e.tag for e in part.root], ["q"])

    def test_remove_keeps_tail_text(self):
        part = package.XmlPart.parse("a.xml", b"<a>x<b/>tail<c/>after</a>")
        part.remove_local("b")
        self.assertEqual(part.root.text, "xtail")
        part.remove_local("c")
        self.assertEqual(etree.tostring(part.root), b"<a>xtailafter</a>")

    def test_malformed_xml_is_corrupt(self):
        with self.assertRaises(CorruptPackageError) as ctx:
            package.XmlPart.parse("xl/worksheets/sheet1.xml", b"<worksheet><sheetData>")
        self.assertIn("xl/worksheets/sheet1.xml", str(ctx.exception))

    def test_to_bytes_keeps_declaration(self):
        data = b'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n<root/>'
        out = package.XmlPart.parse("a.xml", data).to_bytes()
        self.assertTrue(out.startswith(b"<?xml version='1.0' encoding='UTF-8' standalone='yes'?>"))


class TestPartLayout(unittest.TestCase):
    def test_defaults(self):
        layout = package.PartLayout.from_config(None)
        self.assertEqual(layout, package.PartLayout())
        self.assertEqual(layout.workbook, "xl/workbook.xml")

    def test_worksheets_dir_gets_trailing_slash(self):
        layout = package.PartLayout.from_config({"worksheets_dir": "xl/sheets"})
        self.assertEqual(layout.worksheets_dir, "xl/sheets/")
        self.assertEqual(layout.core_properties, "docProps/core.xml")


if __name__ == "__main__":
    unittest.main()
