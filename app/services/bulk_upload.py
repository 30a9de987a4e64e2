"""
Bulk product add/update from CSV or XLSX, with a colour-coded result workbook.
"""
import csv
import io
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from sqlalchemy.orm import Session

from app.config import settings
from app.models import Product, ProductLog, utcnow
from app.services.errors import validation_error
from app.services.products import ACTION_CREATED, ACTION_UPDATED, FIELD_LABELS, detect_changes, product_snapshot

logger = logging.getLogger(__name__)

VALID_CATEGORIES = [
    "Apparel",
    "Accessories",
    "Footwear",
    "Electronics",
    "Home & Living",
    "Beauty & Personal Care",
    "Sports & Outdoors",
    "Books & Stationery",
    "Food & Beverages",
    "Other",
]
DEFAULT_CATEGORY = "Other"

MODES = ("add", "update")

COLUMNS = ["Product Name", "SKU", "Weight", "Category", "Description", "Price", "Stock"]
RESULT_COLUMNS = COLUMNS + ["Status", "Message"]

STATUS_SUCCESS = "Success"
STATUS_ERROR = "Error"
STATUS_SKIPPED = "Skipped"

# (fill, font colour) per result status
STATUS_STYLES = {
    STATUS_SUCCESS: ("D4EDDA", "155724"),
    STATUS_ERROR: ("F8D7DA", "721C24"),
    STATUS_SKIPPED: ("FFF3CD", "856404"),
}

_COLUMN_PATTERNS = [
    (re.compile(r"^product\s*name$", re.I), "Product Name"),
    (re.compile(r"^sku$", re.I), "SKU"),
    (re.compile(r"^weight(\s*\(g(rams?)?\))?$", re.I), "Weight"),
    (re.compile(r"^category$", re.I), "Category"),
    (re.compile(r"^description$", re.I), "Description"),
    (re.compile(r"^price(\s*\(₹\))?$", re.I), "Price"),
    (re.compile(r"^stock$", re.I), "Stock"),
]


@dataclass
class RowResult:
    row: dict[str, Any]
    status: str
    message: str


@dataclass
class BulkResult:
    mode: str
    total: int = 0
    success: int = 0
    skipped: int = 0
    errors: int = 0
    rows: list[RowResult] = field(default_factory=list)

    def add(self, row: dict[str, Any], status: str, message: str) -> None:
        self.rows.append(RowResult(row, status, message))
        if status == STATUS_SUCCESS:
            self.success += 1
        elif status == STATUS_SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1

    def summary(self) -> dict[str, int]:
        return {"total": self.total, "success": self.success, "skipped": self.skipped, "errors": self.errors}


def normalize_column(name: Any) -> str:
    key = str(name or "").strip()
    for pattern, canonical in _COLUMN_PATTERNS:
        if pattern.match(key):
            return canonical
    return key


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(value: Any) -> Optional[str]:
    return None if _blank(value) else str(value).strip()


def parse_rows(filename: str, content: bytes) -> list[dict[str, Any]]:
    """Read the first sheet (XLSX) or the CSV into dicts keyed by canonical column names."""
    name = (filename or "").lower()
    if name.endswith(".xlsx"):
        try:
            workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
        except (InvalidFileException, BadZipFile, KeyError) as e:
            raise validation_error(f"Could not read Excel file: {e}")
        sheet = workbook.worksheets[0] if workbook.worksheets else None
        if sheet is None:
            raise validation_error("No worksheet found in the file")
        rows_iter = sheet.iter_rows(values_only=True)
        header = next(rows_iter, None)
        if not header:
            return []
        keys = [normalize_column(h) for h in header]
        rows = [dict(zip(keys, values)) for values in rows_iter]
        workbook.close()
    elif name.endswith(".csv"):
        text = content.decode("utf-8-sig", errors="replace")
        reader = csv.DictReader(io.StringIO(text))
        rows = [{normalize_column(k): v for k, v in r.items() if k is not None} for r in reader]
    else:
        raise validation_error("File must be an Excel (.xlsx) or CSV (.csv) file")
    return [r for r in rows if any(not _blank(v) for v in r.values())]


def check_structure(rows: list[dict[str, Any]], mode: str) -> None:
    if not rows:
        raise validation_error("File is empty or has no valid data rows")
    required = ["SKU"] + (["Product Name", "Weight"] if mode == "add" else [])
    missing = [col for col in required if col not in rows[0]]
    if missing:
        raise validation_error(
            "Invalid file structure",
            details=[f"Missing required column: {col}" for col in missing],
        )


def _number(value: Any, cast=float) -> Optional[float]:
    """Parse a numeric cell; blank is None, garbage raises ValueError."""
    if _blank(value):
        return None
    parsed = float(str(value).strip())
    if not math.isfinite(parsed):
        raise ValueError(f"not a finite number: {value}")
    return cast(parsed)


def validate_row(row: dict[str, Any], mode: str, row_number: int) -> dict[str, Any]:
    """Return the parsed values for the row, or raise ValueError with a row message."""
    sku = _text(row.get("SKU"))
    if not sku:
        raise ValueError(f"Row {row_number}: SKU is required")
    values: dict[str, Any] = {"sku": sku.upper()}

    name = _text(row.get("Product Name"))
    if mode == "add" and not name:
        raise ValueError(f"Row {row_number}: Product Name is required for adding new products")
    if name:
        values["name"] = name

    try:
        weight = _number(row.get("Weight"))
    except ValueError:
        weight = -1
    if weight is not None and weight <= 0:
        raise ValueError(f"Row {row_number}: Weight must be a positive number")
    if mode == "add" and weight is None:
        raise ValueError(f"Row {row_number}: Weight must be greater than 0")
    if weight is not None:
        values["weight"] = weight

    category = _text(row.get("Category"))
    if category and category not in VALID_CATEGORIES:
        raise ValueError(
            f'Row {row_number}: Invalid category "{category}". Valid options: {", ".join(VALID_CATEGORIES)}'
        )
    if category:
        values["category"] = category
    elif mode == "add":
        values["category"] = DEFAULT_CATEGORY

    try:
        price = _number(row.get("Price"))
    except ValueError:
        price = -1
    if price is not None and price < 0:
        raise ValueError(f"Row {row_number}: Price must be a non-negative number")
    if price is not None:
        values["price"] = price

    try:
        stock = _number(row.get("Stock"), cast=int)
    except ValueError:
        stock = -1
    if stock is not None and stock < 0:
        raise ValueError(f"Row {row_number}: Stock must be a non-negative integer")
    if stock is not None:
        values["stock"] = stock

    description = _text(row.get("Description"))
    if description:
        values["description"] = description
    return values


def process_rows(db: Session, business_id: str, user_id: str, rows: list[dict[str, Any]], mode: str) -> BulkResult:
    if mode not in MODES:
        raise validation_error('mode must be either "add" or "update"')
    check_structure(rows, mode)

    existing = {
        p.sku: p for p in db.query(Product).filter(Product.business_id == business_id).all()
    }
    seen: set[str] = set()
    result = BulkResult(mode=mode, total=len(rows))
    limit = max(1, settings.WRITE_BATCH_LIMIT)
    pending = 0

    for index, row in enumerate(rows):
        row_number = index + 2
        try:
            values = validate_row(row, mode, row_number)
        except ValueError as e:
            result.add(row, STATUS_ERROR, str(e))
            continue

        sku = values["sku"]
        if sku in seen:
            result.add(row, STATUS_SKIPPED, f'Duplicate SKU "{sku}" in file; only the first row is used')
            continue
        seen.add(sku)

        if mode == "add":
            if sku in existing:
                result.add(row, STATUS_SKIPPED, f'SKU "{sku}" already exists in the system')
                continue
            product = Product(
                business_id=business_id,
                mapped_variants=[],
                status="active",
                created_by=user_id,
                updated_by=user_id,
                **values,
            )
            db.add(product)
            db.flush()
            changes = [
                {"field": f, "fieldLabel": FIELD_LABELS[f], "oldValue": None, "newValue": values[f]}
                for f in ("name", "weight", "category")
            ]
            db.add(ProductLog(
                business_id=business_id,
                product_id=product.id,
                action=ACTION_CREATED,
                changes=changes,
                details={"source": "bulk_upload"},
                performed_by=user_id,
                performed_at=utcnow(),
            ))
            existing[sku] = product
            result.add(row, STATUS_SUCCESS, "Product created successfully")
        else:
            product = existing.get(sku)
            if product is None:
                result.add(row, STATUS_SKIPPED, f'SKU "{sku}" does not exist in the system')
                continue
            updates = {k: v for k, v in values.items() if k != "sku"}
            changes = detect_changes(product_snapshot(product), updates)
            if not changes:
                result.add(row, STATUS_SKIPPED, "No fields to update")
                continue
            for change in changes:
                setattr(product, change["field"], change["newValue"])
            product.updated_by = user_id
            product.updated_at = utcnow()
            db.add(ProductLog(
                business_id=business_id,
                product_id=product.id,
                action=ACTION_UPDATED,
                changes=changes,
                details={"source": "bulk_upload"},
                performed_by=user_id,
                performed_at=utcnow(),
            ))
            result.add(row, STATUS_SUCCESS, "Product updated successfully")

        pending += 2
        if pending >= limit:
            db.flush()
            pending = 0

    db.flush()
    logger.info("Bulk %s for business %s: %s", mode, business_id, result.summary())
    return result


_thin = Side(style="thin")
_border = Border(left=_thin, right=_thin, top=_thin, bottom=_thin)
_WIDTHS = {"Product Name": 25, "SKU": 15, "Weight": 10, "Category": 18, "Description": 30,
           "Price": 10, "Stock": 10, "Status": 12, "Message": 40}


def _header(ws, columns: list[str]) -> None:
    fill = PatternFill(start_color="E0E0E0", end_color="E0E0E0", fill_type="solid")
    for col, name in enumerate(columns, 1):
        cell = ws.cell(row=1, column=col, value=name)
        cell.font = Font(bold=True)
        cell.fill = fill
        cell.border = _border
        cell.alignment = Alignment(horizontal="center")
        ws.column_dimensions[cell.column_letter].width = _WIDTHS.get(name, 15)


def result_workbook(result: BulkResult) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = "Results"
    _header(ws, RESULT_COLUMNS)
    for r, item in enumerate(result.rows, 2):
        for c, name in enumerate(COLUMNS, 1):
            value = item.row.get(name)
            ws.cell(row=r, column=c, value=value).border = _border
        status_cell = ws.cell(row=r, column=len(COLUMNS) + 1, value=item.status)
        fill, font = STATUS_STYLES[item.status]
        status_cell.fill = PatternFill(start_color=fill, end_color=fill, fill_type="solid")
        status_cell.font = Font(color=font, bold=True)
        status_cell.border = _border
        ws.cell(row=r, column=len(COLUMNS) + 2, value=item.message).border = _border
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def template_workbook(mode: str) -> bytes:
    if mode not in MODES:
        raise validation_error('mode must be either "add" or "update"')
    wb = Workbook()
    ws = wb.active
    ws.title = "Products"
    _header(ws, COLUMNS)
    if mode == "add":
        ws.append(["Cotton T-Shirt", "TSHIRT-001", 250, "Apparel", "Crew neck, 100% cotton", 499, 100])
    else:
        ws.append(["", "TSHIRT-001", "", "", "", 549, ""])

    notes = wb.create_sheet("Instructions")
    notes.column_dimensions["A"].width = 90
    lines = [
        f"Mode: {mode}",
        "SKU is required on every row and is stored in upper case.",
        "Add mode: Product Name and Weight are required; Category defaults to Other."
        if mode == "add"
        else "Update mode: blank cells leave the existing value unchanged.",
        "Weight must be greater than 0 (grams). Price and Stock must be non-negative.",
        "Valid categories: " + ", ".join(VALID_CATEGORIES),
    ]
    for line in lines:
        notes.append([line])
    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()
