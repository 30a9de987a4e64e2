"""
Business product catalogue routes, including spreadsheet bulk upload
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.auth import authorize_business, get_current_user
from app.database import get_db
from app.http.requests.schemas import ProductCreate, ProductUpdate
from app.models import Product, User
from app.services import bulk_upload, products as product_service

logger = logging.getLogger(__name__)
router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _xlsx_response(content: bytes, filename: str, headers: Optional[dict] = None) -> Response:
    all_headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    all_headers.update(headers or {})
    return Response(content=content, media_type=XLSX_MEDIA_TYPE, headers=all_headers)


@router.get("")
async def list_products(
    businessId: str = Query(...),
    category: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    query = db.query(Product).filter(Product.business_id == access.business.id)
    if category:
        query = query.filter(Product.category == category)
    products = query.order_by(Product.sku).all()
    return {"products": [product_service.product_to_dict(p) for p in products], "total": len(products)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_product(
    data: ProductCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    product = product_service.create_product(db, access.business.id, current_user.id, data)
    db.commit()
    return {"success": True, "message": "Product created successfully", "product": product_service.product_to_dict(product)}


@router.get("/bulk-upload/template")
async def download_bulk_template(
    mode: str = Query("add"),
    current_user: User = Depends(get_current_user),
):
    content = bulk_upload.template_workbook(mode)
    return _xlsx_response(content, f"products-{mode}-template.xlsx")


@router.post("/bulk-upload")
async def bulk_upload_products(
    file: UploadFile = File(...),
    mode: str = Form(...),
    businessId: str = Form(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Add or update products from an XLSX/CSV file.
    Returns the file back with a Status and Message column per row; counts go in X-Summary-* headers.
    """
    access = authorize_business(db, businessId, current_user)
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")
    rows = bulk_upload.parse_rows(file.filename or "", content)
    result = bulk_upload.process_rows(db, access.business.id, current_user.id, rows, mode)
    db.commit()

    summary = result.summary()
    headers = {
        "X-Summary-Total": str(summary["total"]),
        "X-Summary-Success": str(summary["success"]),
        "X-Summary-Skipped": str(summary["skipped"]),
        "X-Summary-Errors": str(summary["errors"]),
        "Access-Control-Expose-Headers": "X-Summary-Total, X-Summary-Success, X-Summary-Skipped, X-Summary-Errors",
    }
    return _xlsx_response(bulk_upload.result_workbook(result), f"bulk-{mode}-results.xlsx", headers)


@router.get("/{sku}")
async def get_product(
    sku: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    return product_service.product_to_dict(product_service.get_product(db, access.business.id, sku))


@router.put("/{sku}")
async def update_product(
    sku: str,
    data: ProductUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, data.businessId, current_user)
    product, changes = product_service.update_product(db, access.business.id, current_user.id, sku, data)
    if not changes:
        return {"success": True, "message": "No changes detected.", "changes": []}
    db.commit()
    return {
        "success": True,
        "message": "Product updated successfully",
        "changes": changes,
        "product": product_service.product_to_dict(product),
    }


@router.delete("/{sku}")
async def delete_product(
    sku: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    tombstone = product_service.delete_product(db, access.business.id, current_user.id, sku)
    db.commit()
    return {"success": True, "message": "Product deleted successfully", "sku": tombstone.sku}


@router.get("/{sku}/logs")
async def list_product_logs(
    sku: str,
    businessId: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    access = authorize_business(db, businessId, current_user)
    logs = product_service.list_logs(db, access.business.id, sku)
    return {"logs": [product_service.log_to_dict(log) for log in logs]}
