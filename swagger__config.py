"""
Swagger/OpenAPI configuration for the Salon Checkout API
"""

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Salon Checkout API",
        "description": "Front desk visits, checkout, coupons, loyalty points and invoices",
        "contact": {"email": "support@salonapp.com"},
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/",
    "schemes": ["http", "https"],
    "tags": [
        {"name": "Reception", "description": "Visit check-in, line items and checkout"},
        {"name": "Coupons", "description": "Coupon administration and validation"},
        {"name": "Loyalty", "description": "Loyalty points balance, ledger and adjustments"},
        {"name": "Receipts", "description": "Invoices issued at checkout"},
        {"name": "Utility", "description": "Service status"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "error"},
                "message": {"type": "string"},
                "details": {"type": "object"},
            },
        },
        "Success": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "success"},
                "message": {"type": "string"},
            },
        },
        "VisitItemInput": {
            "type": "object",
            "required": ["kind"],
            "properties": {
                "kind": {"type": "string", "enum": ["service", "product"]},
                "service_id": {"type": "integer"},
                "product_id": {"type": "integer"},
                "name": {"type": "string", "description": "Required without a catalog id"},
                "price": {"type": "number", "description": "Overrides the catalog price"},
                "quantity": {"type": "integer", "minimum": 1, "default": 1},
                "staff_id": {"type": "integer"},
            },
        },
        "Coupon": {
            "type": "object",
            "properties": {
                "code": {"type": "string", "example": "FLAT200"},
                "description": {"type": "string"},
                "discount_type": {"type": "string", "enum": ["flat", "percentage"]},
                "discount_value": {"type": "number"},
                "min_order_amount": {"type": "number"},
                "max_discount_amount": {"type": "number"},
                "valid_from": {"type": "string", "format": "date-time"},
                "valid_until": {"type": "string", "format": "date-time"},
                "max_usage_count": {"type": "integer"},
                "current_usage_count": {"type": "integer"},
                "is_active": {"type": "boolean"},
                "status": {
                    "type": "string",
                    "enum": ["Active", "Inactive", "Expired", "Scheduled", "Exhausted"],
                },
            },
        },
        "Invoice": {
            "type": "object",
            "properties": {
                "invoice_id": {"type": "string", "example": "VELVET0001"},
                "visit_id": {"type": "integer"},
                "customer_id": {"type": "integer"},
                "items": {"type": "array", "items": {"type": "object"}},
                "subtotal": {"type": "number"},
                "discount_type": {
                    "type": "string",
                    "enum": ["none", "percentage", "flat", "coins", "membership", "coupon"],
                },
                "discount_description": {"type": "string"},
                "discount_amount": {"type": "number"},
                "coupon_code": {"type": "string"},
                "coupon_is_capped": {"type": "boolean"},
                "coupon_original_discount": {"type": "number"},
                "coupon_applied_discount": {"type": "number"},
                "points_used": {"type": "integer"},
                "points_discount_amount": {"type": "number"},
                "loyalty_points_earned": {"type": "integer"},
                "total_amount": {"type": "number"},
                "paid_amount": {"type": "number"},
                "balance": {"type": "number"},
                "payment_mode": {"type": "string"},
                "status": {"type": "string", "enum": ["paid", "partial"]},
                "created_at": {"type": "string", "format": "date-time"},
            },
        },
    },
}
