"""
Parameterized SQL for catalog, client, quote and outcome access.

All queries use asyncpg positional placeholders ($1, $2, ...). Catalog lookups
consult ``parts_enhanced`` before ``parts``; line items hydrate against either
table through their ``sku`` column.
"""

# =============================================================================
# CATALOG
# =============================================================================

PART_COLUMNS = """
    id, sku, name, category, subcategory, model, description, price,
    COALESCE(labor_hours, 0) AS labor_hours, frequency_band, system_type,
    COALESCE(inventory_qty, 0) AS inventory_qty
"""

PART_BY_SKU_ENHANCED = f"SELECT {PART_COLUMNS} FROM parts_enhanced WHERE sku = $1"

PART_BY_SKU = f"SELECT {PART_COLUMNS} FROM parts WHERE sku = $1"

PART_BY_ID = f"SELECT {PART_COLUMNS} FROM parts WHERE id = $1"

LIST_PARTS = f"SELECT {PART_COLUMNS} FROM parts ORDER BY category, name"

# Optional filters: pass NULL for frequency band ($2) or system type ($3) to widen
CHEAPEST_PART = f"""
    SELECT {PART_COLUMNS}
    FROM (
        SELECT id, sku, name, category, subcategory, model, description, price,
               labor_hours, frequency_band, system_type, inventory_qty,
               0 AS source_rank
        FROM parts_enhanced
        UNION ALL
        SELECT id, sku, name, category, subcategory, model, description, price,
               labor_hours, frequency_band, system_type, inventory_qty,
               1 AS source_rank
        FROM parts
    ) catalog
    WHERE category = $1
      AND ($2::text IS NULL OR frequency_band = $2)
      AND ($3::text IS NULL OR system_type = $3)
    ORDER BY price ASC, source_rank ASC
    LIMIT 1
"""

COMPATIBLE_ACCESSORIES = """
    SELECT acc.id, acc.sku, acc.name, acc.category, acc.subcategory, acc.model,
           acc.description, acc.price, COALESCE(acc.labor_hours, 0) AS labor_hours,
           acc.frequency_band, acc.system_type,
           COALESCE(acc.inventory_qty, 0) AS inventory_qty
    FROM product_compatibility pc
    JOIN parts_enhanced radio ON radio.id = pc.primary_product_id
    JOIN parts_enhanced acc ON acc.id = pc.compatible_product_id
    WHERE radio.sku = $1
      AND COALESCE(pc.compatibility_type, '') <> 'incompatible'
    ORDER BY acc.category, acc.subcategory, acc.price
"""

# =============================================================================
# CLIENTS
# =============================================================================

CLIENT_BY_NAME_INDUSTRY = """
    SELECT * FROM clients
    WHERE name = $1 AND industry = $2
    LIMIT 1
"""

# The no-op update makes RETURNING yield the existing row on conflict;
# xmax = 0 only for freshly inserted tuples
UPSERT_CLIENT = """
    INSERT INTO clients (
        name, industry, contact_person, email, phone, address,
        current_system, coverage_area, user_count, special_requirements
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
    ON CONFLICT (name, industry) DO UPDATE SET name = clients.name
    RETURNING *, (xmax = 0) AS inserted
"""

CLIENT_BY_ID = "SELECT * FROM clients WHERE id = $1"

LIST_CLIENTS = "SELECT * FROM clients ORDER BY name"

# =============================================================================
# QUOTES
# =============================================================================

INSERT_QUOTE = """
    INSERT INTO quotes (quote_number, client_id, status, system_type, notes)
    VALUES ($1, $2, 'draft', $3, $4)
    RETURNING id, quote_number
"""

INSERT_QUOTE_ITEM = """
    INSERT INTO quote_items (
        quote_id, part_id, sku, quantity, unit_price, total_price, labor_hours, notes
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
"""

QUOTE_HEADER_SELECT = """
    SELECT q.id, q.quote_number, q.client_id, q.status, q.system_type,
           q.total_parts, q.total_labor, q.total_tax, q.total_amount,
           q.notes, q.created_at, q.updated_at,
           c.name AS client_name, c.industry, c.contact_person, c.email,
           c.user_count
    FROM quotes q
    LEFT JOIN clients c ON q.client_id = c.id
"""

QUOTE_HEADER = QUOTE_HEADER_SELECT + " WHERE q.id = $1"

LIST_QUOTES = QUOTE_HEADER_SELECT + " ORDER BY q.created_at DESC LIMIT $1 OFFSET $2"

QUOTE_ITEMS = """
    SELECT qi.id, qi.quote_id, qi.part_id, qi.sku, qi.quantity, qi.unit_price,
           qi.total_price, COALESCE(qi.labor_hours, 0) AS labor_hours, qi.notes,
           COALESCE(pe.name, p.name) AS part_name,
           COALESCE(pe.category, p.category) AS category,
           COALESCE(pe.subcategory, p.subcategory) AS subcategory,
           COALESCE(pe.model, p.model) AS model,
           COALESCE(pe.frequency_band, p.frequency_band) AS frequency_band,
           COALESCE(pe.system_type, p.system_type) AS system_type,
           COALESCE(pe.description, p.description) AS description
    FROM quote_items qi
    LEFT JOIN parts_enhanced pe ON pe.sku = qi.sku
    LEFT JOIN parts p ON p.sku = qi.sku AND pe.id IS NULL
    WHERE qi.quote_id = $1
    ORDER BY qi.id
"""

# =============================================================================
# TOTALS
# =============================================================================

LOCK_QUOTE = "SELECT id FROM quotes WHERE id = $1 FOR UPDATE"

ITEM_AMOUNTS = """
    SELECT total_price, COALESCE(labor_hours, 0) AS labor_hours
    FROM quote_items
    WHERE quote_id = $1
    ORDER BY id
"""

UPDATE_QUOTE_TOTALS = """
    UPDATE quotes SET
        total_parts = $2,
        total_labor = $3,
        total_tax = $4,
        total_amount = $5,
        updated_at = NOW()
    WHERE id = $1
"""

# =============================================================================
# OUTCOMES & INTERACTIONS
# =============================================================================

INSERT_OUTCOME = """
    INSERT INTO quote_outcomes (
        quote_id, outcome, outcome_reason, customer_feedback,
        actual_installation_cost, actual_installation_time, performance_rating,
        issues_encountered, lessons_learned, competitor_product,
        competitor_price, follow_up_opportunities
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
    RETURNING id
"""

UPDATE_QUOTE_STATUS = """
    UPDATE quotes SET status = $2, updated_at = NOW()
    WHERE id = $1
"""

INSERT_INTERACTION = """
    INSERT INTO ai_interactions_enhanced (session_id, intent_classification, quote_id)
    VALUES ($1, $2, $3)
"""
