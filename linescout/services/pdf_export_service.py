from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from linescout.models.handoff import Handoff
from linescout.models.quote import Quote

_PAGE_TOP = 770
_LINE_HEIGHT = 14


def _escape_pdf_text(value: str) -> str:
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _page_stream(lines: list[str]) -> bytes:
    commands = ["BT", "/F1 11 Tf", f"50 {_PAGE_TOP} Td"]
    for index, line in enumerate(lines):
        if index:
            commands.append(f"0 -{_LINE_HEIGHT} Td")
        commands.append(f"({_escape_pdf_text(line)}) Tj")
    commands.append("ET")
    # Helvetica is a WinAnsi font; unsupported glyphs degrade to '?'.
    return "\n".join(commands).encode("latin-1", errors="replace")


def build_text_pdf(
    *,
    title: str,
    lines: list[str],
    generated_at: datetime | None = None,
    lines_per_page: int = 50,
) -> bytes:
    timestamp = generated_at or datetime.now(timezone.utc)
    content = [title, f"Generated: {timestamp.isoformat()}", ""] + [line.rstrip() for line in lines]
    pages = [content[i : i + lines_per_page] for i in range(0, len(content), lines_per_page)] or [[title]]

    # Objects: 1 catalog, 2 page tree, 3 font, then a (page, contents) pair per page.
    page_ids = [4 + 2 * index for index in range(len(pages))]
    objects: list[bytes] = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        (
            "<< /Type /Pages /Kids [%s] /Count %d >>"
            % (" ".join(f"{pid} 0 R" for pid in page_ids), len(pages))
        ).encode("ascii"),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, page_lines in zip(page_ids, pages):
        stream = _page_stream(page_lines)
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>"
            ).encode("ascii")
        )
        objects.append(b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream))

    pdf = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n"
    offsets: list[int] = []
    for index, obj in enumerate(objects, start=1):
        offsets.append(len(pdf))
        pdf += f"{index} 0 obj\n".encode("ascii") + obj + b"\nendobj\n"

    xref_offset = len(pdf)
    pdf += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    pdf += b"0000000000 65535 f \n"
    for offset in offsets:
        pdf += f"{offset:010d} 00000 n \n".encode("ascii")
    pdf += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF"
    ).encode("ascii")
    return pdf


def _naira(value: Decimal | None) -> str:
    return f"NGN {Decimal(value or 0):,.2f}"


def build_quote_pdf(quote: Quote, handoff: Handoff | None) -> bytes:
    lines = [f"Quote reference: {quote.token}"]
    if handoff:
        lines.append(f"Project: {handoff.token} ({handoff.route_type.replace('_', ' ')})")
        if handoff.customer_name:
            lines.append(f"Customer: {handoff.customer_name}")
    lines.extend(["", "Items"])
    for index, item in enumerate(quote.items_json or [], start=1):
        lines.append(
            f"{index}. {item.get('product_name')} x {item.get('quantity')} "
            f"@ RMB {item.get('unit_price_rmb')}"
        )
        if item.get("product_description"):
            lines.append(f"    {item['product_description']}")

    unit_label = "CBM" if quote.shipping_rate_unit == "per_cbm" else "KG"
    lines.extend(
        [
            "",
            f"Exchange rate (RMB to NGN): {quote.exchange_rate_rmb}",
            f"Exchange rate (USD to NGN): {quote.exchange_rate_usd}",
            f"Shipping rate: USD {quote.shipping_rate_usd} per {unit_label}",
            "",
            f"Total weight: {quote.total_weight_kg} kg",
            f"Total volume: {quote.total_cbm} cbm",
            f"Product cost: {_naira(quote.total_product_ngn)} (RMB {quote.total_product_rmb})",
            f"Service charge: {_naira(quote.total_markup_ngn)}",
            f"Shipping: {_naira(quote.total_shipping_ngn)} (USD {quote.total_shipping_usd})",
            f"Total due: {_naira(quote.total_due_ngn)}",
        ]
    )
    if quote.deposit_enabled and quote.deposit_percent:
        lines.append(f"Deposit option: {quote.deposit_percent}% of product cost and service charge")
    if quote.agent_note:
        lines.extend(["", f"Note: {quote.agent_note}"])
    return build_text_pdf(title="LineScout Quote", lines=lines)
