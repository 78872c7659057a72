# backend/template_renderer.py
import io
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import jinja2
from docx.opc.exceptions import PackageNotFoundError
from docxtpl import DocxTemplate

from docx_parser import (
    BODY_PART, W_P, W_T, TemplateRenderError,
    read_archive, write_archive, repair_parts, text_parts,
    PLACEHOLDER_RE, extract_placeholders, parse_xml, serialize_xml, paragraph_text,
)
from qr_image import QR_MARKER, QR_PLACEHOLDER_RE, decode_data_url, inject_qr_image

log = logging.getLogger(__name__)

QR_PLACEHOLDER = "QRCode"


@dataclass
class RenderContext:
    template: bytes                                   # .docx bytes, never mutated
    values: Mapping[str, Any] = field(default_factory=dict)
    qr_image: str | None = None                       # data:image/png;base64,...


@dataclass(frozen=True)
class RenderedCertificate:
    content: bytes
    qr_placement: str | None = None                   # inline|split|paragraph|anchored

    @property
    def size(self) -> int:
        return len(self.content)


# Braces outside a substitutable {{name}} are swapped for these private-use
# characters before docxtpl sees the XML, then swapped back afterwards.
BRACE_OPEN, BRACE_CLOSE = "\ue000", "\ue001"
JINJA_TAG_RE = re.compile(r"\{%.*?%\}|\{#.*?#\}")


def _protect_text(text: str, names) -> str:
    keep = [m.span() for m in PLACEHOLDER_RE.finditer(text) if m.group(1) in names]
    keep += [m.span() for m in JINJA_TAG_RE.finditer(text)]
    out, pos = [], 0
    for start, end in sorted(keep):
        if start < pos:
            continue
        out.append(text[pos:start].replace("{", BRACE_OPEN).replace("}", BRACE_CLOSE))
        out.append(text[start:end])
        pos = end
    out.append(text[pos:].replace("{", BRACE_OPEN).replace("}", BRACE_CLOSE))
    return "".join(out)

def protect_braces(parts: dict[str, bytes], names) -> int:
    """
    Leave only {{name}} tokens for `names` (and whole {% %} / {# #} tags inside
    one text node) for the template engine; every other brace stays literal.
    """
    protected = 0
    for name in text_parts(parts):
        root = parse_xml(parts[name], name)
        n = 0
        for t in root.iter(W_T):
            if t.text and ("{" in t.text or "}" in t.text):
                new = _protect_text(t.text, names)
                if new != t.text:
                    t.text = new
                    n += 1
        if n:
            parts[name] = serialize_xml(root)
            protected += n
    return protected

def restore_braces(parts: dict[str, bytes]) -> None:
    sentinels = (BRACE_OPEN.encode("utf-8"), BRACE_CLOSE.encode("utf-8"))
    for name in text_parts(parts):
        if not any(s in parts[name] for s in sentinels):
            continue
        root = parse_xml(parts[name], name)
        for t in root.iter(W_T):
            if t.text:
                t.text = t.text.replace(BRACE_OPEN, "{").replace(BRACE_CLOSE, "}")
        parts[name] = serialize_xml(root)


def _mark_qr_placeholders(parts: dict[str, bytes]) -> int:
    root = parse_xml(parts[BODY_PART])
    if any(QR_MARKER in paragraph_text(p) for p in root.iter(W_P)):
        raise TemplateRenderError(f"Template text already contains the reserved marker {QR_MARKER}")
    n = 0
    for t in root.iter(W_T):
        if t.text and QR_PLACEHOLDER_RE.search(t.text):
            t.text, k = QR_PLACEHOLDER_RE.subn(QR_MARKER, t.text)
            n += k
    if n:
        parts[BODY_PART] = serialize_xml(root)
    return n

def _substitute(docx_bytes: bytes, context: dict) -> bytes:
    env = jinja2.Environment(autoescape=True)
    try:
        tpl = DocxTemplate(io.BytesIO(docx_bytes))
        tpl.render(context, env, autoescape=True)
    except jinja2.TemplateError as e:
        raise TemplateRenderError(f"Template syntax error: {e}") from e
    except (PackageNotFoundError, KeyError, ValueError) as e:
        raise TemplateRenderError(f"Template could not be opened: {e}") from e
    out = io.BytesIO()
    tpl.save(out)
    return out.getvalue()

def render(document: bytes, placeholder_values: Mapping[str, Any], qr_image: str | None = None,
           logger: logging.Logger | None = None) -> RenderedCertificate:
    """
    Fill a .docx template: repair split placeholders, substitute values and
    embed the QR image where {{QRCode}} sits (or anchored on the page when it
    can't be placed). Raises TemplateRenderError when the template can't be
    opened or its placeholder syntax is broken; unknown names stay as text.
    """
    logger = logger or log
    parts = repair_parts(read_archive(document), logger)
    names = list(dict.fromkeys(n for p in text_parts(parts) for n in extract_placeholders(parts[p])))

    png = None
    if qr_image:
        png = decode_data_url(qr_image)
        if png is None:
            logger.warning("QR payload is not a base64 image data URL, skipping QR image")

    if not names and png is None:
        logger.debug("Template has no placeholders, returning it unchanged")
        return RenderedCertificate(document)

    if png is not None:
        _mark_qr_placeholders(parts)

    missing = [n for n in names if n != QR_PLACEHOLDER and n not in placeholder_values]
    if missing:
        logger.warning("No value for placeholder(s) %s, leaving them as text", ", ".join(missing))

    context = {k: "" if v is None else str(v) for k, v in placeholder_values.items()}
    context[QR_PLACEHOLDER] = ""
    protect_braces(parts, context)
    out_parts = read_archive(_substitute(write_archive(parts), context))
    restore_braces(out_parts)
    placement = None
    if png is not None:
        placement = inject_qr_image(out_parts, png, logger)
    return RenderedCertificate(write_archive(out_parts), placement)

def render_template(ctx: RenderContext, logger: logging.Logger | None = None) -> RenderedCertificate:
    return render(ctx.template, ctx.values, ctx.qr_image, logger)
