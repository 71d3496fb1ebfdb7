CORE_COLUMN_CATALOG = {
    "id": {"type": "uuid_pk", "aliases": ["id"]},
    "name": {"type": "text", "aliases": ["name", "part name", "item name", "product name"]},
    "description": {"type": "text", "aliases": ["description", "details", "item description"]},
    "quantity": {"type": "integer", "aliases": ["quantity", "qty", "count", "stock"]},
    "category": {"type": "text", "aliases": ["category", "type", "group"]},
    "part_id": {"type": "text", "aliases": ["part id", "partid"]},
    "location": {"type": "text", "aliases": ["location", "loc"]},
    "supplier": {"type": "text", "aliases": ["supplier"]},
    "part_number": {"type": "text", "aliases": ["part number", "partno"]},
    "manufacturer": {"type": "text", "aliases": ["manufacturer", "make"]},
    "machine_model": {"type": "text", "aliases": ["machine model", "machine"]},
    "part_category": {"type": "text", "aliases": ["part category", "parttype"]},
    "stock_quantity": {"type": "integer", "aliases": ["stock quantity", "stockqty"]},
    "min_stock_level": {"type": "integer", "aliases": ["min stock level", "minstock"]},
    "unit_cost": {"type": "numeric", "aliases": ["unit cost (₹)", "unitcost", "cost"]},
    "lead_time": {"type": "integer", "aliases": ["lead time (days)", "leadtime"]},
    "last_replaced_date": {"type": "timestamp", "aliases": ["last replaced date", "lastreplaced"]},
    "last_used_at": {"type": "timestamp", "aliases": ["last used at"]},
    "usage_count": {"type": "integer", "aliases": ["usage count"]},
    "created_at": {"type": "timestamp", "aliases": ["created at"]},
    "updated_at": {"type": "timestamp", "aliases": ["updated at"]},
}

TIMESTAMP_COLUMNS = ("created_at", "updated_at")

PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST",
}

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
