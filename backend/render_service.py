# backend/render_service.py
import io
import logging
import mammoth

from docx_parser import PLACEHOLDER_RE, read_archive, repair_parts, write_archive

log = logging.getLogger(__name__)

def docx_to_html(docx_bytes: bytes) -> str:
    # preview the repaired template so split placeholders show up whole
    fixed = write_archive(repair_parts(read_archive(docx_bytes)))
    result = mammoth.convert_to_html(io.BytesIO(fixed), style_map=_style_map())
    for msg in result.messages:
        log.debug("mammoth: %s", msg)
    html = result.value

    # Highlight placeholders and add a data-key for click sync with the mapping table
    def repl(m):
        return f"<span class='ph' data-key='{_escape_attr(m.group(1))}'>{m.group(0)}</span>"

    html = PLACEHOLDER_RE.sub(repl, html)
    wrapped = f"""
    <div class="docx-page">
      {html}
    </div>
    """
    return wrapped

def _style_map():
    return """
    p[style-name='Normal'] => p:fresh
    table => table.table
    """

def _escape_attr(s: str) -> str:
    return s.replace('"', '&quot;').replace("'", "&#39;")
