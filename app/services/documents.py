"""
PDF documents: purchase orders, vendor pick lists and A4 shipping slips.
"""
import io
import logging
from datetime import datetime
from typing import Iterable, Optional

from reportlab.graphics.barcode import code128
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.models import Order, PurchaseOrder, Store

logger = logging.getLogger(__name__)

HEADER_BLUE = colors.HexColor("#4472C4")
DEFAULT_SELLER = "Majime Technologies"
GST_NOT_CONFIGURED = "NOT_CONFIGURED"


def _money(value: Optional[float], currency: str = "INR") -> str:
    return f"{currency} {float(value or 0):,.2f}"


def _grid_style(header_bg=HEADER_BLUE) -> TableStyle:
    return TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), header_bg),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("ALIGN", (2, 1), (-1, -1), "RIGHT"),
    ])


def purchase_order_pdf(po: PurchaseOrder) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, leftMargin=18 * mm, rightMargin=18 * mm, title=po.po_number)
    styles = getSampleStyleSheet()
    status = po.status.value if hasattr(po.status, "value") else str(po.status)

    story = [
        Paragraph(f"Purchase Order {po.po_number}", styles["Title"]),
        Spacer(1, 4 * mm),
    ]
    details = Table(
        [
            ["Supplier", po.supplier_name or "", "Status", status.replace("_", " ").title()],
            ["Warehouse", po.warehouse_name or po.warehouse_id, "Expected", po.expected_date or ""],
            ["Currency", po.currency or "INR", "Created", po.created_at.strftime("%d/%m/%Y") if po.created_at else ""],
        ],
        colWidths=[28 * mm, 60 * mm, 25 * mm, 60 * mm],
    )
    details.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("BOX", (0, 0), (-1, -1), 0.5, colors.black),
        ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.grey),
    ]))
    story += [details, Spacer(1, 6 * mm)]

    rows = [["#", "SKU", "Product", "Ordered", "Received", "Unit Cost", "Line Total"]]
    for idx, item in enumerate(po.items, start=1):
        rows.append([
            str(idx),
            item.sku,
            Paragraph(item.product_name or "", styles["BodyText"]),
            str(item.ordered_qty),
            str(item.received_qty or 0),
            f"{item.unit_cost:,.2f}",
            f"{item.ordered_qty * item.unit_cost:,.2f}",
        ])
    rows.append(["", "", "Total", str(sum(i.ordered_qty for i in po.items)), "", "", _money(po.total_amount, po.currency or "INR")])
    items = Table(rows, colWidths=[8 * mm, 28 * mm, 55 * mm, 18 * mm, 18 * mm, 20 * mm, 27 * mm], repeatRows=1)
    style = _grid_style()
    style.add("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold")
    items.setStyle(style)
    story.append(items)

    if po.notes:
        story += [Spacer(1, 6 * mm), Paragraph(f"<b>Notes:</b> {po.notes}", styles["BodyText"])]

    doc.build(story)
    return buffer.getvalue()


def aggregate_vendor_items(orders: Iterable[Order], vendor: str) -> list[dict]:
    """Sum line item quantities per SKU for one vendor, skipping tombstoned orders."""
    totals: dict[str, int] = {}
    for order in orders:
        if order.is_deleted:
            continue
        for item in (order.raw or {}).get("line_items") or []:
            if item.get("vendor") != vendor:
                continue
            sku = item.get("sku") or "N/A"
            totals[sku] = totals.get(sku, 0) + int(item.get("quantity") or 0)
    return [{"sku": sku, "quantity": qty} for sku, qty in sorted(totals.items())]


def vendor_pick_list_pdf(vendor: str, po_number: str, items: list[dict]) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"{vendor}-{po_number}")
    styles = getSampleStyleSheet()
    header = Table(
        [
            ["Po. No.", f"{vendor}-{po_number}"],
            ["Date", datetime.now().strftime("%d/%m/%Y")],
            ["Total Pcs", str(sum(i["quantity"] for i in items))],
        ],
        colWidths=[60 * mm, 110 * mm],
    )
    header.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("GRID", (0, 0), (-1, -1), 0.75, colors.black),
    ]))
    rows = [["Sr. No.", "Item SKU", "Qty"]] + [
        [str(idx), item["sku"], str(item["quantity"])] for idx, item in enumerate(items, start=1)
    ]
    table = Table(rows, colWidths=[20 * mm, 120 * mm, 30 * mm], repeatRows=1)
    table.setStyle(_grid_style())
    doc.build([Paragraph("Purchase Order", styles["Title"]), header, Spacer(1, 6 * mm), table])
    return buffer.getvalue()


def seller_details(store: Store) -> dict[str, str]:
    return {
        "name": store.seller_name or DEFAULT_SELLER,
        "gst": store.seller_gstin or GST_NOT_CONFIGURED,
        "returnAddress": store.return_address or "",
    }


def _ship_to_lines(raw: dict) -> list[str]:
    addr = raw.get("shipping_address") or (raw.get("customer") or {}).get("default_address") or {}
    lines = [addr.get("address1"), addr.get("address2"), ", ".join(p for p in (addr.get("city"), addr.get("province")) if p)]
    return [line for line in lines if line]


def _is_cod(order: Order) -> bool:
    gateways = [g.lower() for g in (order.raw or {}).get("payment_gateway_names") or []]
    return order.financial_status == "pending" or any("cash on delivery" in g or g == "cod" for g in gateways)


def _draw_slip(pdf: canvas.Canvas, order: Order, seller: dict[str, str]) -> None:
    width, height = A4
    margin = 15 * mm
    raw = order.raw or {}
    y = height - margin - 10

    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(margin, y, seller["name"])
    if order.courier:
        pdf.drawRightString(width - margin, y, order.courier.upper())

    y -= 30
    if order.awb:
        pdf.setFont("Helvetica-Bold", 12)
        pdf.drawCentredString(width / 2, y, f"AWB# {order.awb}")
        barcode = code128.Code128(order.awb, barHeight=18 * mm, barWidth=1.2)
        y -= 20 * mm + 5
        barcode.drawOn(pdf, (width - barcode.width) / 2, y)
        y -= 14
        pdf.setFont("Helvetica", 12)
        pdf.drawCentredString(width / 2, y, order.awb)
    else:
        pdf.setFont("Helvetica-Oblique", 11)
        pdf.drawCentredString(width / 2, y, "AWB not assigned")

    y -= 30
    addr = raw.get("shipping_address") or {}
    customer = addr.get("name") or " ".join(
        p for p in ((raw.get("customer") or {}).get("first_name"), (raw.get("customer") or {}).get("last_name")) if p
    )
    pdf.setFont("Helvetica-Bold", 12)
    pdf.drawString(margin, y, f"Ship to - {customer or 'Customer'}")
    if _is_cod(order):
        pdf.drawRightString(width - margin, y, "COD - Express")
        pdf.drawRightString(width - margin, y - 16, _money(order.total_price, order.currency or "INR"))
    else:
        pdf.drawRightString(width - margin, y, "Prepaid")
    pdf.setFont("Helvetica", 10)
    for line in _ship_to_lines(raw):
        y -= 14
        pdf.drawString(margin, y, line[:90])
    if addr.get("zip"):
        y -= 14
        pdf.drawString(margin, y, f"PIN - {addr['zip']}")

    y -= 28
    pdf.setFont("Helvetica-Bold", 11)
    pdf.drawString(margin, y, f"Seller: {seller['name']}")
    pdf.drawRightString(width - margin, y, order.name or f"#{order.order_id}")
    y -= 16
    pdf.setFont("Helvetica", 10)
    pdf.drawString(margin, y, f"GST: {seller['gst']}")

    y -= 12
    pdf.line(margin, y, width - margin, y)
    y -= 16
    columns = [("Product Name", margin), ("SKU", margin + 95 * mm), ("Qty.", margin + 135 * mm), ("Total", width - margin)]
    pdf.setFont("Helvetica-Bold", 10)
    for label, x in columns[:-1]:
        pdf.drawString(x, y, label)
    pdf.drawRightString(columns[-1][1], y, columns[-1][0])
    pdf.setFont("Helvetica", 9)
    for item in raw.get("line_items") or []:
        y -= 14
        qty = int(item.get("quantity") or 1)
        pdf.drawString(margin, y, str(item.get("title") or item.get("name") or "")[:55])
        pdf.drawString(margin + 95 * mm, y, str(item.get("sku") or ""))
        pdf.drawString(margin + 135 * mm, y, str(qty))
        pdf.drawRightString(width - margin, y, f"{float(item.get('price') or 0) * qty:,.2f}")

    if seller["returnAddress"]:
        pdf.setFont("Helvetica", 9)
        pdf.drawString(margin, margin, f"Return Address: {seller['returnAddress']}"[:120])


def shipping_slips_pdf(orders: list[Order], store: Store) -> bytes:
    """One A4 page per order, numbered 'Page n of m'."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    seller = seller_details(store)
    width, _ = A4
    for idx, order in enumerate(orders, start=1):
        _draw_slip(pdf, order, seller)
        pdf.setFont("Helvetica", 8)
        pdf.drawCentredString(width / 2, 8 * mm, f"Page {idx} of {len(orders)}")
        pdf.showPage()
    pdf.save()
    logger.info("Rendered %s shipping slip(s) for %s", len(orders), store.id)
    return buffer.getvalue()
