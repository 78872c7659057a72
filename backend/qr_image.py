# backend/qr_image.py
import io
import re
import base64
import binascii
import logging
from copy import deepcopy
from itertools import count

import qrcode
from PIL import Image
from lxml import etree

from config import QR_SIZE
from docx_parser import (
    BODY_PART, W_NS, W_P, W_R, W_T, W_RPR,
    parse_xml, serialize_xml, paragraph_pieces, paragraph_text, collapse_span, set_text,
)

log = logging.getLogger(__name__)

# Callers must keep this string out of their own template text.
QR_MARKER = "[[QR_INLINE_IMG]]"
LOOSE_MARKER_RE = re.compile(r"QR[_ ]?INLINE[_ ]?IMG")
QR_PLACEHOLDER_RE = re.compile(r"\{\{\s*QRCode\s*\}\}")

QR_REL_ID = "rIdQRCodeImage"
RELS_PART = "word/_rels/document.xml.rels"
CONTENT_TYPES_PART = "[Content_Types].xml"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
IMAGE_REL_TYPE = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/image"
WP_NS = "http://schemas.openxmlformats.org/drawingml/2006/wordprocessingDrawing"

EMU_PER_MM = 36000
QR_EXTENT = 25 * EMU_PER_MM  # 25mm square

_NSDECL = (f'xmlns:w="{W_NS}" xmlns:wp="{WP_NS}" '
           'xmlns:a="http://schemas.openxmlformats.org/drawingml/2006/main" '
           'xmlns:pic="http://schemas.openxmlformats.org/drawingml/2006/picture" '
           'xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships"')

_GRAPHIC = """<a:graphic><a:graphicData uri="http://schemas.openxmlformats.org/drawingml/2006/picture">
<pic:pic><pic:nvPicPr><pic:cNvPr id="0" name="{media}"/><pic:cNvPicPr/></pic:nvPicPr>
<pic:blipFill><a:blip r:embed="{rid}"/><a:stretch><a:fillRect/></a:stretch></pic:blipFill>
<pic:spPr><a:xfrm><a:off x="0" y="0"/><a:ext cx="{cx}" cy="{cy}"/></a:xfrm><a:prstGeom prst="rect"><a:avLst/></a:prstGeom></pic:spPr>
</pic:pic></a:graphicData></a:graphic>"""

_INLINE = """<w:r {ns}><w:drawing><wp:inline distT="0" distB="0" distL="0" distR="0">
<wp:extent cx="{cx}" cy="{cy}"/><wp:docPr id="{doc_id}" name="QRCode"/>{graphic}</wp:inline></w:drawing></w:r>"""

# bottom-left corner of the page, floating over the text
_ANCHORED = """<w:p {ns}><w:r><w:drawing>
<wp:anchor simplePos="0" relativeHeight="0" behindDoc="0" locked="0" layoutInCell="1" allowOverlap="1">
<wp:simplePos x="0" y="0"/>
<wp:positionH relativeFrom="page"><wp:align>left</wp:align></wp:positionH>
<wp:positionV relativeFrom="page"><wp:align>bottom</wp:align></wp:positionV>
<wp:extent cx="{cx}" cy="{cy}"/><wp:effectExtent l="0" t="0" r="0" b="0"/><wp:wrapNone/>
<wp:docPr id="{doc_id}" name="QRCodeAnchored"/>{graphic}</wp:anchor></w:drawing></w:r></w:p>"""


# ---------- payloads ----------
def make_qr_png(text: str, size: int = QR_SIZE) -> bytes:
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=10, border=1)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").get_image()
    if size and img.size[0] != size:
        img = img.resize((size, size), Image.Resampling.NEAREST)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()

def make_qr_data_url(text: str, size: int = QR_SIZE) -> str:
    return "data:image/png;base64," + base64.b64encode(make_qr_png(text, size)).decode("ascii")

def decode_data_url(payload: str) -> bytes | None:
    """Raw image bytes from a `data:image/...;base64,...` string, or None."""
    if not payload or not payload.startswith("data:image") or "," not in payload:
        return None
    try:
        return base64.b64decode(payload.split(",", 1)[1], validate=True)
    except (binascii.Error, ValueError):
        return None


# ---------- package bookkeeping ----------
def _add_media(parts: dict[str, bytes], png: bytes) -> str:
    name, n = "qrcode.png", 0
    while f"word/media/{name}" in parts:
        n += 1
        name = f"qrcode{n}.png"
    parts[f"word/media/{name}"] = png
    return name

def _ensure_png_content_type(parts: dict[str, bytes]) -> None:
    if CONTENT_TYPES_PART not in parts:
        return
    root = parse_xml(parts[CONTENT_TYPES_PART], CONTENT_TYPES_PART)
    for d in root.iter(f"{{{CT_NS}}}Default"):
        if (d.get("Extension") or "").lower() == "png":
            return
    root.insert(0, etree.Element(f"{{{CT_NS}}}Default", Extension="png", ContentType="image/png"))
    parts[CONTENT_TYPES_PART] = serialize_xml(root)

def register_image(parts: dict[str, bytes], png: bytes, logger: logging.Logger | None = None) -> tuple[str, str]:
    """
    Store the QR png in word/media and link it from the document body.
    A second call on the same archive reuses the existing relationship.
    Returns (relationship id, media file name).
    """
    logger = logger or log
    if RELS_PART in parts:
        rels = parse_xml(parts[RELS_PART], RELS_PART)
    else:
        rels = etree.Element(f"{{{PKG_REL_NS}}}Relationships", nsmap={None: PKG_REL_NS})
    for rel in rels.iter(f"{{{PKG_REL_NS}}}Relationship"):
        if rel.get("Id") == QR_REL_ID:
            target = rel.get("Target", "")
            logger.info("Relationship %s already present, reusing %s", QR_REL_ID, target)
            parts["word/" + target] = png
            return QR_REL_ID, target.rsplit("/", 1)[-1]
    media = _add_media(parts, png)
    etree.SubElement(rels, f"{{{PKG_REL_NS}}}Relationship",
                     Id=QR_REL_ID, Type=IMAGE_REL_TYPE, Target=f"media/{media}")
    parts[RELS_PART] = serialize_xml(rels)
    _ensure_png_content_type(parts)
    return QR_REL_ID, media


# ---------- drawings ----------
def _doc_pr_ids(root):
    used = [int(d.get("id")) for d in root.iter(f"{{{WP_NS}}}docPr") if (d.get("id") or "").isdigit()]
    return count(max(used, default=0) + 1)

def inline_drawing(rid: str, media: str, doc_id: int):
    graphic = _GRAPHIC.format(media=media, rid=rid, cx=QR_EXTENT, cy=QR_EXTENT)
    return etree.fromstring(_INLINE.format(ns=_NSDECL, cx=QR_EXTENT, cy=QR_EXTENT, doc_id=doc_id, graphic=graphic))

def anchored_drawing(rid: str, media: str, doc_id: int):
    graphic = _GRAPHIC.format(media=media, rid=rid, cx=QR_EXTENT, cy=QR_EXTENT)
    return etree.fromstring(_ANCHORED.format(ns=_NSDECL, cx=QR_EXTENT, cy=QR_EXTENT, doc_id=doc_id, graphic=graphic))


# ---------- marker replacement ----------
def _split_run_at_marker(t, make_drawing) -> int:
    """Replace `t`'s run with runs for the text around each marker and a drawing run per marker."""
    run = t.getparent()
    parent = run.getparent()
    idx = parent.index(run)
    rpr = run.find(W_RPR)
    content = [c for c in run if c.tag != W_RPR]
    pos = content.index(t)
    chunks = (t.text or "").split(QR_MARKER)

    new_runs = []
    for i, chunk in enumerate(chunks):
        children = content[:pos] if i == 0 else []
        if chunk:
            nt = etree.Element(W_T)
            set_text(nt, chunk)
            children.append(nt)
        if i == len(chunks) - 1:
            children.extend(content[pos + 1:])
        if children:
            r = etree.Element(W_R)
            if rpr is not None:
                r.append(deepcopy(rpr))
            r.extend(children)
            new_runs.append(r)
        if i < len(chunks) - 1:
            new_runs.append(make_drawing())
    parent.remove(run)
    for offset, r in enumerate(new_runs):
        parent.insert(idx + offset, r)
    return len(chunks) - 1

def replace_exact(root, make_drawing) -> int:
    hits = [t for t in root.iter(W_T) if t.text and QR_MARKER in t.text]
    return sum(_split_run_at_marker(t, make_drawing) for t in hits)

def replace_split(root, make_drawing) -> int:
    placed = 0
    for p in list(root.iter(W_P)):
        while True:
            pieces = paragraph_pieces(p)
            full = "".join(text for _, text, _ in pieces)
            start = full.find(QR_MARKER)
            if start < 0:
                break
            collapse_span(pieces, start, start + len(QR_MARKER))
            placed += replace_exact(p, make_drawing)
    return placed

def replace_paragraph(root, make_drawing) -> int:
    placed = 0
    for p in list(root.iter(W_P)):
        if not LOOSE_MARKER_RE.search(paragraph_text(p)):
            continue
        for child in list(p):
            if child.tag != f"{{{W_NS}}}pPr":
                p.remove(child)
        p.append(make_drawing())
        placed += 1
    return placed

def marker_left(root) -> bool:
    if any(LOOSE_MARKER_RE.search(paragraph_text(p)) for p in root.iter(W_P)):
        return True
    return any(el.text and LOOSE_MARKER_RE.search(el.text) for el in root.iter())

def _strip_marker_text(root) -> None:
    for el in root.iter():
        if el.text and LOOSE_MARKER_RE.search(el.text):
            el.text = LOOSE_MARKER_RE.sub("", el.text.replace(QR_MARKER, ""))

def _append_anchored(root, drawing) -> None:
    body = root.find(f"{{{W_NS}}}body")
    sect = body.find(f"{{{W_NS}}}sectPr")
    if sect is not None:
        sect.addprevious(drawing)
    else:
        body.append(drawing)

def inject_qr_image(parts: dict[str, bytes], png: bytes, logger: logging.Logger | None = None) -> str:
    """
    Put the QR png where the marker sits in the document body, trying in turn:
    exact marker text, marker split across runs, any paragraph mentioning it.
    If none of them resolves every marker, the image is anchored at the page's
    bottom-left corner instead. Returns which of the four placements was used.
    """
    logger = logger or log
    rid, media = register_image(parts, png, logger)
    root = parse_xml(parts[BODY_PART])
    ids = _doc_pr_ids(root)
    make_drawing = lambda: inline_drawing(rid, media, next(ids))

    placed, how = 0, "anchored"
    for tier, replace in (("inline", replace_exact), ("split", replace_split), ("paragraph", replace_paragraph)):
        n = replace(root, make_drawing)
        placed += n
        if n:
            how = tier
        if not marker_left(root):
            break
    if not placed or marker_left(root):
        logger.warning("QR marker not resolved in document body, anchoring QR image at page corner")
        _strip_marker_text(root)
        _append_anchored(root, anchored_drawing(rid, media, next(ids)))
        how = "anchored"
    else:
        logger.debug("QR image placed (%s, %d occurrence(s))", how, placed)
    parts[BODY_PART] = serialize_xml(root)
    return how
