"""
api/routes/v1/products.py -- Local product records.

Routes:
  POST /api/v1/products              -- create one product or a batch (post_products;
                                        also upload_media when any item has images)
  GET  /api/v1/products              -- every product (get_products)
  GET  /api/v1/products/mine         -- the caller's products (get_my_products)
  GET  /api/v1/products/bestsellers  -- the caller's products by sales (get_bestsellers)

Products are owned by the user behind the credential; for an API key that
is the key's owner.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import ProductCreateBody, ProductCreatedResponse, ProductResponse
from auth.dependencies import get_auth_store, get_current_principal, require_permissions
from auth.evaluator import authorize
from auth.models import Principal
from auth.permissions import Permission
from auth.tokens import generate_public_id
from catalog.models import Product
from catalog.store import ProductStore

logger = logging.getLogger("permgate.api")

router = APIRouter()


def get_catalog(request: Request) -> ProductStore:
    return request.app.state.catalog


def _product_to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        public_id=product.public_id,
        name=product.name,
        images=list(product.images),
        external_id=product.external_id,
        sales_count=product.sales_count,
        created_at=product.created_at,
    )


@router.post("/products", response_model=ProductCreatedResponse, status_code=201)
async def create_products(
    request: Request,
    body: ProductCreateBody,
    principal: Principal = Depends(get_current_principal),
) -> ProductCreatedResponse:
    """Create products. The body is one product object or an array of them."""
    items = body if isinstance(body, list) else [body]
    if not items:
        raise HTTPException(
            status_code=400,
            detail={"code": "validation_error", "message": "At least one product is required."},
        )

    store = get_auth_store(request)
    authorize(store, principal, [Permission.POST_PRODUCTS.value])
    if any(item.images for item in items):
        authorize(store, principal, [Permission.UPLOAD_MEDIA.value])

    products = [
        Product(
            name=item.name,
            created_by=principal.user_id,
            public_id=generate_public_id("product"),
            images=[str(url) for url in item.images],
            external_id=item.external_id,
        )
        for item in items
    ]
    # All or nothing: a conflict leaves no product from this batch behind.
    try:
        created = get_catalog(request).create_products(products)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "conflict",
                "message": "A product with this external_id already exists. No products were created.",
            },
        ) from exc

    logger.info("Created %d product(s) for '%s'", len(created), principal.username)
    return ProductCreatedResponse(created=[_product_to_response(p) for p in created])


@router.get("/products", response_model=list[ProductResponse])
async def list_products(
    request: Request,
    _principal: Principal = Depends(require_permissions(Permission.GET_PRODUCTS.value)),
) -> list[ProductResponse]:
    return [_product_to_response(p) for p in get_catalog(request).list_products()]


@router.get("/products/mine", response_model=list[ProductResponse])
async def list_my_products(
    request: Request,
    principal: Principal = Depends(require_permissions(Permission.GET_MY_PRODUCTS.value)),
) -> list[ProductResponse]:
    products = get_catalog(request).list_products(created_by=principal.user_id)
    return [_product_to_response(p) for p in products]


@router.get("/products/bestsellers", response_model=list[ProductResponse])
async def list_bestsellers(
    request: Request,
    principal: Principal = Depends(require_permissions(Permission.GET_BESTSELLERS.value)),
) -> list[ProductResponse]:
    """The caller's products ordered by units sold."""
    products = get_catalog(request).list_bestsellers(principal.user_id)
    return [_product_to_response(p) for p in products]
