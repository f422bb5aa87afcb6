"""
Builders for small in-memory .xlsx packages used across the tests.
"""

import io
import zipfile

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"

OLE_SIGNATURE = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

CONTENT_TYPES = b"""<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types"><Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/><Default Extension="xml" ContentType="application/xml"/><Override PartName="/xl/workbook.xml" ContentType="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet.main+xml"/></Types>"""

ROOT_RELS = b"""<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships"><Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="xl/workbook.xml"/></Relationships>"""

SHEET_RELS = b"""<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships"></Relationships>"""

CORE_XML = b"""<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<cp:coreProperties xmlns:cp="http://schemas.openxmlformats.org/package/2006/metadata/core-properties" xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:dcterms="http://purl.org/dc/terms/" xmlns:dcmitype="http://purl.org/dc/dcmitype/" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"><dc:title>Quarterly Budget</dc:title><dc:creator>Jane Doe</dc:creator><cp:lastModifiedBy>John Roe</cp:lastModifiedBy><dcterms:created xsi:type="dcterms:W3CDTF">2023-10-26T12:00:00Z</dcterms:created><dcterms:modified xsi:type="dcterms:W3CDTF">2024-01-15T08:30:00Z</dcterms:modified></cp:coreProperties>"""

APP_XML = b"""<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Properties xmlns="http://schemas.openxmlformats.org/officeDocument/2006/extended-properties" xmlns:vt="http://schemas.openxmlformats.org/officeDocument/2006/docPropsVTypes"><Application>Microsoft Excel</Application><DocSecurity>0</DocSecurity><ScaleCrop>false</ScaleCrop><Company>ACME Corp</Company><Manager>Wile E.</Manager><LinksUpToDate>false</LinksUpToDate><SharedDoc>false</SharedDoc><AppVersion>16.0300</AppVersion></Properties>"""


def workbook_xml(protected: bool = False) -> bytes:
    protection = (
        '<workbookProtection workbookAlgorithmName="SHA-512" '
        'workbookHashValue="abc=" workbookSaltValue="def=" '
        'workbookSpinCount="100000" lockStructure="1"/>'
        if protected else ""
    )
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        f'<workbook xmlns="{MAIN_NS}" xmlns:r="{REL_NS}">'
        '<workbookPr defaultThemeVersion="166925"/>'
        f'{protection}'
        '<bookViews><workbookView xWindow="0" yWindow="0"/></bookViews>'
        '<sheets><sheet name="Sheet1" sheetId="1" r:id="rId1"/></sheets>'
        '</workbook>'
    ).encode("utf-8")


def sheet_xml(protected: bool = False, value: str = "42") -> bytes:
    protection = (
        '<sheetProtection algorithmName="SHA-512" hashValue="xyz=" '
        'saltValue="uvw=" spinCount="100000" sheet="1" objects="1" scenarios="1"/>'
        if protected else ""
    )
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
        f'<worksheet xmlns="{MAIN_NS}" xmlns:r="{REL_NS}">'
        '<dimension ref="A1"/>'
        f'<sheetData><row r="1"><c r="A1"><v>{value}</v></c></row></sheetData>'
        f'{protection}'
        '<pageMargins left="0.7" right="0.7" top="0.75" bottom="0.75" header="0.3" footer="0.3"/>'
        '</worksheet>'
    ).encode("utf-8")


def build_xlsx(parts: dict) -> bytes:
    """Zip a {path: bytes} mapping, in insertion order."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in parts.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def make_parts(workbook_protected: bool = False, sheets=(False,), core=CORE_XML, app=APP_XML) -> dict:
    parts = {
        "[Content_Types].xml": CONTENT_TYPES,
        "_rels/.rels": ROOT_RELS,
        "xl/workbook.xml": workbook_xml(workbook_protected),
    }
    for i, protected in enumerate(sheets, 1):
        parts[f"xl/worksheets/sheet{i}.xml"] = sheet_xml(protected, value=str(i))
    if sheets:
        parts["xl/worksheets/_rels/sheet1.xml.rels"] = SHEET_RELS
    if core is not None:
        parts["docProps/core.xml"] = core
    if app is not None:
        parts["docProps/app.xml"] = app
    return parts


def make_xlsx(**kwargs) -> bytes:
    return build_xlsx(make_parts(**kwargs))


def read_parts(data: bytes) -> dict:
    """Unzip package bytes into {path: bytes}."""
    with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
        return {info.filename: zf.read(info) for info in zf.infolist()}
