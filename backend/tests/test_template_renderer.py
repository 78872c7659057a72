# backend/tests/test_template_renderer.py
import logging

import pytest

from docx_parser import TemplateRenderError
from qr_image import QR_MARKER, make_qr_data_url
from template_renderer import RenderContext, render, render_template
from docx_builder import PROOFING_AADHAR, body_xml, docx_text, make_docx, para, read_parts, run, split_runs

QR_URL = make_qr_data_url("Cert:CERT042|Name:Asha Rao")


def media_files(docx_bytes):
    return [n for n in read_parts(docx_bytes) if n.startswith("word/media/")]

def test_render_fills_values():
    doc = make_docx(para(run("Name: {{Name}}, ID: {{CertificateNo}}")))
    out = render(doc, {"Name": "Asha Rao", "CertificateNo": "CERT042"})
    assert "Name: Asha Rao, ID: CERT042" in docx_text(out.content)
    assert out.qr_placement is None
    assert out.size == len(out.content)

def test_render_repairs_split_placeholder_first():
    doc = make_docx(PROOFING_AADHAR)
    out = render(doc, {"AadharNo": "1234-5678-9012"})
    text = docx_text(out.content)
    assert "Aadhar: 1234-5678-9012" in text
    assert "{{" not in text and "}}" not in text

def test_render_split_across_formatting_runs():
    doc = make_docx(para(split_runs("Issued to {{Name}} on {{IssueDate}}", [12, 25])))
    out = render(doc, {"Name": "Ravi", "IssueDate": "01/02/2024"})
    assert "Issued to Ravi on 01/02/2024" in docx_text(out.content)

def test_unknown_placeholder_stays_literal(caplog):
    doc = make_docx(para(run("{{Name}} / {{Grade}}")))
    with caplog.at_level(logging.WARNING):
        out = render(doc, {"Name": "Asha"})
    assert "Asha / {{Grade}}" in docx_text(out.content)
    assert any("Grade" in r.getMessage() for r in caplog.records)

def test_values_are_escaped_for_xml():
    doc = make_docx(para(run("Center: {{TrainingCenter}}")))
    out = render(doc, {"TrainingCenter": "R&D <Lab> \"North\""})
    assert 'Center: R&D <Lab> "North"' in docx_text(out.content)

def test_none_value_renders_empty():
    doc = make_docx(para(run("Grade:{{Grade}}.")))
    assert "Grade:." in docx_text(render(doc, {"Grade": None}).content)

def test_template_without_placeholders_is_returned_unchanged():
    doc = make_docx(para(run("Certificate of completion")))
    assert render(doc, {"Name": "Asha"}).content == doc

def test_invalid_archive_raises():
    with pytest.raises(TemplateRenderError):
        render(b"PK not really", {"Name": "x"})

def test_broken_template_syntax_raises():
    doc = make_docx(para(run("{{Name}}")) + para(run("{% endfor %}")))
    with pytest.raises(TemplateRenderError, match="syntax"):
        render(doc, {"Name": "Asha"})

def test_render_template_uses_context():
    doc = make_docx(para(run("Hello {{Name}}")))
    out = render_template(RenderContext(template=doc, values={"Name": "Meera"}))
    assert "Hello Meera" in docx_text(out.content)


# ---------- QR ----------
def test_qr_placeholder_becomes_inline_image():
    doc = make_docx(para(run("Name: {{Name}}")) + para(run("Scan: {{QRCode}}")))
    out = render(doc, {"Name": "Asha Rao"}, QR_URL)
    assert out.qr_placement == "inline"

    parts = read_parts(out.content)
    xml = body_xml(out.content)
    assert media_files(out.content) == ["word/media/qrcode.png"]
    assert parts["word/media/qrcode.png"].startswith(b"\x89PNG")
    assert parts["word/_rels/document.xml.rels"].decode().count('Id="rIdQRCodeImage"') == 1
    assert 'Extension="png"' in parts["[Content_Types].xml"].decode()
    assert "{{QRCode}}" not in xml and QR_MARKER not in xml
    assert "wp:inline" in xml
    assert "Name: Asha Rao" in docx_text(out.content)

def test_split_qr_placeholder_still_inline():
    doc = make_docx(para(split_runs("{{QRCode}}", [4])))
    out = render(doc, {}, QR_URL)
    assert out.qr_placement == "inline"
    assert len(media_files(out.content)) == 1

def test_qr_without_placeholder_is_anchored():
    doc = make_docx(para(run("Name: {{Name}}")))
    out = render(doc, {"Name": "Asha Rao"}, QR_URL)
    assert out.qr_placement == "anchored"
    xml = body_xml(out.content)
    assert xml.index("wp:anchor") < xml.index("<w:sectPr")
    assert "Name: Asha Rao" in docx_text(out.content)

def test_qr_placeholder_renders_empty_without_image():
    doc = make_docx(para(run("Scan: {{QRCode}}")))
    out = render(doc, {})
    assert "{{QRCode}}" not in docx_text(out.content)
    assert media_files(out.content) == []

def test_marker_text_in_template_is_rejected():
    doc = make_docx(para(run(f"{{{{Name}}}} {QR_MARKER}")))
    with pytest.raises(TemplateRenderError, match="reserved marker"):
        render(doc, {"Name": "Asha"}, QR_URL)

def test_bad_qr_payload_is_skipped(caplog):
    doc = make_docx(para(run("Name: {{Name}}")))
    with caplog.at_level(logging.WARNING):
        out = render(doc, {"Name": "Asha"}, "not-a-data-url")
    assert out.qr_placement is None
    assert media_files(out.content) == []
    assert any("QR payload" in r.getMessage() for r in caplog.records)

def test_qr_placeholder_in_header_renders_empty_and_image_is_anchored():
    doc = make_docx(para(run("Name: {{Name}}")), header=para(run("Top {{QRCode}} line")))
    out = render(doc, {"Name": "Asha"}, QR_URL)
    assert out.qr_placement == "anchored"
    header = read_parts(out.content)["word/header1.xml"].decode("utf-8")
    assert "Top  line" in header
    assert "QRCode}}" not in header and QR_MARKER not in header


# ---------- braces that are not substitutable ----------
def test_invalid_placeholder_stays_literal():
    doc = make_docx(para(run("Name: {{Name}}")) + para(run("Father: {{First Name}}")))
    out = render(doc, {"Name": "Asha"})
    assert docx_text(out.content).split("\n") == ["Name: Asha", "Father: {{First Name}}"]

def test_placeholder_split_across_paragraphs_stays_literal():
    doc = make_docx(para(run("A {{Name}} {{Na")) + para(run("me}} tail")))
    out = render(doc, {"Name": "Asha"})
    assert docx_text(out.content).split("\n") == ["A Asha {{Na", "me}} tail"]

def test_unknown_placeholder_keeps_its_spacing():
    doc = make_docx(para(run("{{Name}} got {{ Grade }}")))
    assert "Asha got {{ Grade }}" in docx_text(render(doc, {"Name": "Asha"}).content)

def test_single_braces_are_plain_text():
    doc = make_docx(para(run("Set {a} and {{Name}} }}")))
    assert "Set {a} and Asha }}" in docx_text(render(doc, {"Name": "Asha"}).content)

def test_adjacent_placeholders_in_separate_runs_get_a_space():
    body = ('<w:p><w:r><w:t>{{Name}}</w:t></w:r><w:proofErr w:type="spellStart"/>'
            '<w:r><w:rPr/><w:t>{{CertificateNo}}</w:t></w:r></w:p>')
    out = render(make_docx(body), {"Name": "Asha", "CertificateNo": "C1"})
    assert "Asha C1" in docx_text(out.content)
