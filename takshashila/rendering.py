"""
QR images, the confirmation email body and the printable pass PDF.
"""
from __future__ import annotations

import base64
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence, Tuple

import qrcode
from jinja2 import Environment, FileSystemLoader, select_autoescape
from reportlab.graphics import renderPDF
from reportlab.graphics.barcode import qr
from reportlab.graphics.shapes import Drawing
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from .passtypes import display_name

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


def qr_data_url(payload: str) -> str:
    img = qrcode.make(payload, box_size=10, border=4)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


def render_confirmation(
    *, name: str, amount: int, pass_type: str, pass_id: str, college: str,
    phone: str, qr_code: str, team_name: Optional[str] = None,
    total_members: Optional[int] = None,
) -> Tuple[str, str]:
    """Returns (subject, html)."""
    html = _env.get_template("pass_confirmation.html").render(
        name=name, amount=amount, pass_name=display_name(pass_type),
        pass_id=pass_id, college=college, phone=phone, qr_code=qr_code,
        team_name=team_name, total_members=total_members,
    )
    return f"Your Takshashila {display_name(pass_type)} is confirmed", html


# ----------------------------
# PDF pass
# ----------------------------
PAGE_W, PAGE_H = A4
FRAME = 10 * mm
DARK = colors.Color(26 / 255, 26 / 255, 26 / 255)
MUTED = colors.Color(100 / 255, 100 / 255, 100 / 255)


def _draw_qr(c: canvas.Canvas, data: str, x: float, y: float,
             size: float = 60 * mm) -> None:
    widget = qr.QrCodeWidget(data)
    bx, by, bw, bh = widget.getBounds()
    d = Drawing(size, size,
                transform=[size / (bw - bx), 0, 0, size / (bh - by), 0, 0])
    d.add(widget)
    renderPDF.draw(d, c, x, y)


def _frame(c: canvas.Canvas) -> None:
    c.setStrokeColor(DARK)
    c.setLineWidth(1)
    c.rect(FRAME, FRAME, PAGE_W - 2 * FRAME, PAGE_H - 2 * FRAME)
    c.setStrokeColor(colors.lightgrey)
    c.line(25 * mm, 22 * mm, PAGE_W - 25 * mm, 22 * mm)
    c.setFillColor(MUTED)
    c.setFont("Helvetica", 9)
    c.drawCentredString(PAGE_W / 2, 16 * mm, "Innovation Meets Culture")
    c.setFont("Helvetica", 8)
    c.drawCentredString(PAGE_W / 2, 12 * mm, "Chennai Institute of Technology")


def pass_pdf(
    *, qr_payload: str, pass_type: str, amount: int, user_name: str,
    email: str, phone: str, college: str, team_name: Optional[str] = None,
    members: Sequence[dict] = (),
) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    _frame(c)

    c.setFillColor(DARK)
    c.setFont("Helvetica-Bold", 24)
    c.drawCentredString(PAGE_W / 2, PAGE_H - 40 * mm, "CIT TAKSHASHILA 2026")
    c.setFont("Helvetica", 16)
    c.drawCentredString(PAGE_W / 2, PAGE_H - 48 * mm, "EVENT PASS")
    c.setStrokeColor(MUTED)
    c.line(40 * mm, PAGE_H - 53 * mm, PAGE_W - 40 * mm, PAGE_H - 53 * mm)

    y = PAGE_H - 66 * mm
    rows = [
        ("Pass", display_name(pass_type)),
        ("Amount", f"INR {amount}"),
        ("Name", user_name),
        ("Email", email),
        ("Phone", phone),
        ("College", college),
    ]
    if team_name:
        rows.append(("Team", team_name))
    for label, value in rows:
        c.setFont("Helvetica-Bold", 11)
        c.drawString(30 * mm, y, label)
        c.setFont("Helvetica", 11)
        c.drawString(65 * mm, y, str(value))
        y -= 8 * mm

    qr_size = 60 * mm
    _draw_qr(c, qr_payload, (PAGE_W - qr_size) / 2, y - qr_size - 4 * mm,
             qr_size)
    y -= qr_size + 14 * mm

    if members:
        c.setFont("Helvetica-Bold", 11)
        c.drawString(30 * mm, y, "Members")
        y -= 7 * mm
        c.setFont("Helvetica", 10)
        for m in members:
            if y < 30 * mm:
                c.showPage()
                _frame(c)
                c.setFillColor(DARK)
                c.setFont("Helvetica", 10)
                y = PAGE_H - 30 * mm
            leader = " (leader)" if m.get("is_leader") else ""
            c.drawString(34 * mm, y, f"{m.get('name', '')}{leader}")
            y -= 6 * mm

    c.showPage()
    c.save()
    return buf.getvalue()
