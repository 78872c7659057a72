# backend/tests/test_qr_image.py
import io
import re

from PIL import Image

from qr_image import (
    QR_MARKER, decode_data_url, inject_qr_image, make_qr_data_url, make_qr_png, register_image,
)
from docx_builder import make_docx, para, read_parts, run, split_runs

PNG = make_qr_png("Cert:C1|Name:Asha", size=120)


def parts_for(body):
    return read_parts(make_docx(body))

def body(parts):
    return parts["word/document.xml"].decode("utf-8")

def test_make_qr_png_is_square_png_of_requested_size():
    img = Image.open(io.BytesIO(PNG))
    assert img.format == "PNG"
    assert img.size == (120, 120)

def test_data_url_round_trips_through_decoder():
    url = make_qr_data_url("hello")
    assert url.startswith("data:image/png;base64,")
    assert decode_data_url(url).startswith(b"\x89PNG")

def test_decode_data_url_rejects_garbage():
    assert decode_data_url("") is None
    assert decode_data_url("hello") is None
    assert decode_data_url("data:image/png;base64,!!not base64!!") is None

def test_exact_marker_is_replaced_inline():
    parts = parts_for(para(run(f"Scan {QR_MARKER} here")))
    assert inject_qr_image(parts, PNG) == "inline"
    xml = body(parts)
    assert QR_MARKER not in xml
    assert "Scan " in xml and " here" in xml
    assert "wp:inline" in xml

def test_marker_split_across_runs():
    parts = parts_for(para(split_runs(QR_MARKER, [5, 11])))
    assert inject_qr_image(parts, PNG) == "split"
    xml = body(parts)
    assert "QR_INLINE" not in xml
    assert xml.count("wp:inline ") == 1

def test_loose_marker_replaces_paragraph():
    parts = parts_for(para(run("QR INLINE IMG")) + para(run("Signature")))
    assert inject_qr_image(parts, PNG) == "paragraph"
    xml = body(parts)
    assert "INLINE" not in xml
    assert "Signature" in xml
    assert "wp:inline" in xml

def test_unreachable_marker_falls_back_to_anchor():
    field = f"<w:p><w:r><w:instrText>{QR_MARKER}</w:instrText></w:r></w:p>"
    parts = parts_for(field + para(run("Body text")))
    assert inject_qr_image(parts, PNG) == "anchored"
    xml = body(parts)
    assert "QR_INLINE_IMG" not in xml
    assert xml.index("wp:anchor") < xml.index("<w:sectPr")

def test_no_marker_anchors_at_page_corner():
    parts = parts_for(para(run("Nothing to see")))
    assert inject_qr_image(parts, PNG) == "anchored"
    assert '<wp:align>bottom</wp:align>' in body(parts)

def test_each_drawing_gets_its_own_doc_pr_id():
    parts = parts_for(para(run(f"{QR_MARKER} and {QR_MARKER}")))
    assert inject_qr_image(parts, PNG) == "inline"
    ids = re.findall(r'docPr id="(\d+)"', body(parts))
    assert len(ids) == 2
    assert len(set(ids)) == 2

def test_image_is_registered_once():
    parts = parts_for(para(run(QR_MARKER)))
    inject_qr_image(parts, PNG)
    inject_qr_image(parts, PNG)
    rels = parts["word/_rels/document.xml.rels"].decode()
    assert rels.count('Id="rIdQRCodeImage"') == 1
    assert [n for n in parts if n.startswith("word/media/")] == ["word/media/qrcode.png"]
    assert 'Extension="png"' in parts["[Content_Types].xml"].decode()

def test_register_image_avoids_existing_media_name():
    parts = parts_for(para(run("x")))
    parts["word/media/qrcode.png"] = b"logo"
    rid, media = register_image(parts, PNG)
    assert rid == "rIdQRCodeImage"
    assert media == "qrcode1.png"
    assert parts["word/media/qrcode.png"] == b"logo"
    assert parts["word/media/qrcode1.png"] == PNG
