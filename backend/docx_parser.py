# backend/docx_parser.py
import io
import re
import logging
import zipfile
from lxml import etree

log = logging.getLogger(__name__)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"

def _w(tag: str) -> str:
    return f"{{{W_NS}}}{tag}"

W_P, W_R, W_T, W_TAB, W_RPR, W_PROOF = (_w(t) for t in ("p", "r", "t", "tab", "rPr", "proofErr"))

BODY_PART = "word/document.xml"
TEXT_PART_RE = re.compile(r"^word/(document|header\d*|footer\d*)\.xml$")

# Patterns
PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_]+)\s*\}\}")    # {{ Name }}
TOKEN_BEFORE_RE = re.compile(r"\{\{\s*[A-Za-z0-9_]+\s*\}\}$")
OPEN_BRACES_RE = re.compile(r"\{\{")


class TemplateRenderError(Exception):
    """The template could not be opened, parsed or substituted."""


# ---------- archive ----------
def read_archive(docx_bytes: bytes) -> dict[str, bytes]:
    """Unpack a .docx into {part name: bytes}, keeping the archive order."""
    try:
        with zipfile.ZipFile(io.BytesIO(docx_bytes)) as zin:
            parts = {name: zin.read(name) for name in zin.namelist()}
    except (zipfile.BadZipFile, ValueError) as e:
        raise TemplateRenderError(f"Template is not a valid .docx archive: {e}") from e
    if BODY_PART not in parts:
        raise TemplateRenderError(f"Template archive has no {BODY_PART} part")
    return parts

def write_archive(parts: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zout:
        for name, data in parts.items():
            zout.writestr(name, data)
    return buf.getvalue()

def parse_xml(xml: bytes, part: str = BODY_PART):
    try:
        return etree.fromstring(xml)
    except etree.XMLSyntaxError as e:
        raise TemplateRenderError(f"{part} is not well-formed XML: {e}") from e

def serialize_xml(root) -> bytes:
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)

def text_parts(parts: dict[str, bytes]) -> list[str]:
    return [name for name in parts if TEXT_PART_RE.match(name)]


# ---------- extraction ----------
def extract_placeholders(xml) -> list[str]:
    """
    Distinct {{name}} placeholders in `xml`, in order of first appearance.
    Runs on raw text, so names split across runs are only found after repair_xml.
    """
    if isinstance(xml, bytes):
        xml = xml.decode("utf-8", errors="replace")
    return list(dict.fromkeys(m.group(1) for m in PLACEHOLDER_RE.finditer(xml)))

def find_placeholders(docx_bytes: bytes, logger: logging.Logger | None = None) -> list[str]:
    """Repair every text part of the template and return the placeholders it holds."""
    parts = repair_parts(read_archive(docx_bytes), logger)
    found = []
    for name in text_parts(parts):
        found.extend(extract_placeholders(parts[name]))
    return list(dict.fromkeys(found))


# ---------- paragraph text model ----------
def owning_paragraph(el):
    return next(el.iterancestors(W_P), None)

def paragraph_pieces(p):
    """
    Text-bearing nodes that belong to paragraph `p` (not to a nested text-box
    paragraph), as (node, text, offset). Tabs count as a single "\t".
    """
    pieces, offset = [], 0
    for el in p.iter(W_T, W_TAB):
        if el.tag == W_TAB and el.getparent().tag not in (W_R, W_P):
            continue  # tab stop definition in w:pPr/w:tabs
        if owning_paragraph(el) is not p:
            continue
        text = "\t" if el.tag == W_TAB else (el.text or "")
        pieces.append((el, text, offset))
        offset += len(text)
    return pieces

def paragraph_text(p) -> str:
    return "".join(text for _, text, _ in paragraph_pieces(p))

def set_text(t, text: str) -> None:
    t.text = text
    if text != text.strip():
        t.set(XML_SPACE, "preserve")

def _is_empty_run(r) -> bool:
    for child in r:
        if child.tag == W_RPR:
            continue
        if child.tag == W_T and not child.text:
            continue
        return False
    return True

def drop_empty_runs(runs) -> None:
    for r in runs:
        parent = r.getparent()
        if r.tag == W_R and parent is not None and _is_empty_run(r):
            parent.remove(r)

def collapse_span(pieces, start: int, end: int) -> list:
    """
    Move paragraph text [start, end) into the first node it touches and cut it
    from the others. Returns the runs that were edited.
    """
    hit = [pc for pc in pieces if pc[1] and pc[2] < end and pc[2] + len(pc[1]) > start]
    first, first_text, first_off = hit[0]
    last, last_text, last_off = hit[-1]
    merged = "".join(text for _, text, _ in hit)[start - first_off:end - first_off]
    tail = last_text[end - last_off:]
    touched = []
    for node, _, _ in hit[1:]:
        touched.append(node.getparent())
        if node.tag == W_TAB:
            node.getparent().remove(node)
        else:
            set_text(node, "")
    if tail and last.tag == W_T and last is not first:
        set_text(last, tail)
        tail = ""
    set_text(first, first_text[:start - first_off] + merged + tail)
    return touched


# ---------- repair ----------
def _join_split_placeholder(p) -> list | None:
    pieces = paragraph_pieces(p)
    full = "".join(text for _, text, _ in pieces)
    for m in PLACEHOLDER_RE.finditer(full):
        spans = [pc for pc in pieces if pc[1] and pc[2] < m.end() and pc[2] + len(pc[1]) > m.start()]
        if len(spans) > 1:
            return collapse_span(pieces, m.start(), m.end())
    return None

def _space_adjacent_placeholders(p) -> list | None:
    # {{a}}<tab/>{{b}} and {{a}}</w:r><w:r>{{b}} -> {{a}} {{b}}
    pieces = paragraph_pieces(p)
    full = "".join(text for _, text, _ in pieces)
    for i, (node, text, off) in enumerate(pieces):
        if not text or not TOKEN_BEFORE_RE.search(full[:off]):
            continue
        prev = next(pc for pc in reversed(pieces[:i]) if pc[1])
        if node.tag == W_TAB:
            if not PLACEHOLDER_RE.match(full, off + 1):
                continue
            run = node.getparent()
            run.remove(node)
            set_text(prev[0], prev[1] + " ")
            return [run]
        if PLACEHOLDER_RE.match(full, off):
            set_text(prev[0], prev[1] + " ")
            return []
    return None

def repair_paragraph(p) -> bool:
    changed, touched = False, []
    for step in (_join_split_placeholder, _space_adjacent_placeholders):
        while (runs := step(p)) is not None:
            changed = True
            touched.extend(runs)
    if not changed:
        return False
    for mark in list(p.iter(W_PROOF)):
        if owning_paragraph(mark) is p:
            mark.getparent().remove(mark)
    drop_empty_runs(touched)
    return True

def _warn_unresolved(root, part: str, logger: logging.Logger) -> None:
    for p in root.iter(W_P):
        text = paragraph_text(p)
        valid = {m.start() for m in PLACEHOLDER_RE.finditer(text)}
        for m in OPEN_BRACES_RE.finditer(text):
            if m.start() not in valid:
                logger.warning("Unresolved placeholder in %s: %r", part, text[m.start():m.start() + 40])

def repair_xml(xml: bytes, logger: logging.Logger | None = None, part: str = BODY_PART) -> bytes:
    """
    Collapse placeholders that a word processor split across runs (spell-check
    proofErr marks, formatting changes, tabs) back into single {{name}} tokens.
    Works paragraph by paragraph; never joins text across paragraphs.
    Returns `xml` untouched when nothing needed repair.
    """
    logger = logger or log
    root = parse_xml(xml, part)
    changed = sum(repair_paragraph(p) for p in list(root.iter(W_P)))
    _warn_unresolved(root, part, logger)
    if not changed:
        return xml
    logger.debug("Repaired %d paragraph(s) in %s", changed, part)
    return serialize_xml(root)

def repair_parts(parts: dict[str, bytes], logger: logging.Logger | None = None) -> dict[str, bytes]:
    for name in text_parts(parts):
        parts[name] = repair_xml(parts[name], logger, part=name)
    return parts
