# backend/tests/docx_builder.py
import io
import zipfile
from xml.sax.saxutils import escape

from docx import Document

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"

CONTENT_TYPES = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">
<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>
<Default Extension="xml" ContentType="application/xml"/>
<Override PartName="/word/document.xml" ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>
</Types>"""

ROOT_RELS = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="word/document.xml"/>
</Relationships>"""

DOC_RELS = """<?xml version="1.0" encoding="UTF-8" standalone="yes"?>
<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">
</Relationships>"""

def document_xml(body: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
        f'<w:document xmlns:w="{W_NS}" '
        'xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships" '
        'xmlns:wp="http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing">'
        f'<w:body>{body}<w:sectPr><w:pgSz w:w="11906" w:h="16838"/></w:sectPr></w:body></w:document>'
    )

def run(text: str, bold: bool = False) -> str:
    rpr = "<w:rPr><w:b/></w:rPr>" if bold else ""
    return f'<w:r>{rpr}<w:t xml:space="preserve">{escape(text)}</w:t></w:r>'

def para(*runs: str) -> str:
    return "<w:p>" + "".join(runs) + "</w:p>"

def split_runs(text: str, cuts: list[int]) -> str:
    """`text` cut at the given offsets, one differently formatted run per piece."""
    bounds = [0] + cuts + [len(text)]
    return "".join(run(text[a:b], bold=i % 2 == 1) for i, (a, b) in enumerate(zip(bounds, bounds[1:])))

PROOFING_AADHAR = (
    '<w:p>'
    '<w:r><w:t xml:space="preserve">Aadhar: {{A</w:t></w:r>'
    '<w:proofErr w:type="spellStart"/>'
    '<w:r><w:rPr><w:b/></w:rPr><w:t>adharNo</w:t></w:r>'
    '<w:proofErr w:type="spellEnd"/>'
    '<w:r><w:rPr><w:b/></w:rPr><w:t>}}</w:t></w:r>'
    '</w:p>'
)

HEADER_CT = ('<Override PartName="/word/header1.xml" '
             'ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.header+xml"/>')
HEADER_REL = ('<Relationship Id="rIdHeader1" '
              'Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/header" '
              'Target="header1.xml"/>')

def header_xml(body: str) -> str:
    return ('<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            f'<w:hdr xmlns:w="{W_NS}">{body}</w:hdr>')

def make_docx(body: str, extra: dict | None = None, header: str | None = None) -> bytes:
    """Minimal package; `header` becomes word/header1.xml, linked from the document."""
    content_types, doc_rels = CONTENT_TYPES, DOC_RELS
    if header is not None:
        content_types = content_types.replace("</Types>", HEADER_CT + "\n</Types>")
        doc_rels = doc_rels.replace("</Relationships>", HEADER_REL + "\n</Relationships>")
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as z:
        z.writestr("[Content_Types].xml", content_types)
        z.writestr("_rels/.rels", ROOT_RELS)
        z.writestr("word/document.xml", document_xml(body))
        z.writestr("word/_rels/document.xml.rels", doc_rels)
        if header is not None:
            z.writestr("word/header1.xml", header_xml(header))
        for name, data in (extra or {}).items():
            z.writestr(name, data)
    return buf.getvalue()

def read_parts(docx_bytes: bytes) -> dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(docx_bytes)) as z:
        return {n: z.read(n) for n in z.namelist()}

def body_xml(docx_bytes: bytes) -> str:
    return read_parts(docx_bytes)["word/document.xml"].decode("utf-8")

def docx_text(docx_bytes: bytes) -> str:
    return "\n".join(p.text for p in Document(io.BytesIO(docx_bytes)).paragraphs)
