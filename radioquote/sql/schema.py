"""
PostgreSQL DDL for the Radio Quote Engine.

Applied at startup by ``radioquote.core.database.apply_schema``. Every
statement is idempotent (IF NOT EXISTS) so repeated startups are harmless.

Constraints the services rely on:
- clients UNIQUE(name, industry): client resolve-or-create is an upsert
- quotes UNIQUE(quote_number): collisions trigger a regenerated number
- ai_learning_patterns UNIQUE(pattern_type, pattern_key): flush is an upsert
- ai_learning_accumulators PRIMARY KEY(pattern_type, pattern_key)
"""

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS parts (
    id SERIAL PRIMARY KEY,
    sku TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    subcategory TEXT,
    model TEXT,
    description TEXT,
    price DOUBLE PRECISION NOT NULL,
    labor_hours DOUBLE PRECISION DEFAULT 0,
    frequency_band TEXT,
    system_type TEXT,
    inventory_qty INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS parts_enhanced (
    id SERIAL PRIMARY KEY,
    sku TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    subcategory TEXT,
    model TEXT,
    description TEXT,
    price DOUBLE PRECISION NOT NULL,
    labor_hours DOUBLE PRECISION DEFAULT 0,
    frequency_band TEXT,
    system_type TEXT,
    inventory_qty INTEGER DEFAULT 0,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS product_compatibility (
    id SERIAL PRIMARY KEY,
    primary_product_id INTEGER REFERENCES parts_enhanced (id),
    compatible_product_id INTEGER REFERENCES parts_enhanced (id),
    compatibility_type TEXT,
    compatibility_reason TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE (primary_product_id, compatible_product_id, compatibility_type)
);

CREATE TABLE IF NOT EXISTS clients (
    id SERIAL PRIMARY KEY,
    name TEXT NOT NULL,
    industry TEXT NOT NULL DEFAULT 'General',
    contact_person TEXT,
    email TEXT,
    phone TEXT,
    address TEXT,
    current_system TEXT,
    coverage_area TEXT,
    user_count INTEGER DEFAULT 0,
    special_requirements TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE (name, industry)
);

CREATE TABLE IF NOT EXISTS quotes (
    id SERIAL PRIMARY KEY,
    quote_number TEXT UNIQUE NOT NULL,
    client_id INTEGER REFERENCES clients (id),
    status TEXT NOT NULL DEFAULT 'draft',
    system_type TEXT,
    total_parts DOUBLE PRECISION DEFAULT 0,
    total_labor DOUBLE PRECISION DEFAULT 0,
    total_tax DOUBLE PRECISION DEFAULT 0,
    total_amount DOUBLE PRECISION DEFAULT 0,
    notes TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS quote_items (
    id SERIAL PRIMARY KEY,
    quote_id INTEGER NOT NULL REFERENCES quotes (id) ON DELETE CASCADE,
    part_id INTEGER,
    sku TEXT,
    quantity INTEGER NOT NULL,
    unit_price DOUBLE PRECISION NOT NULL,
    total_price DOUBLE PRECISION NOT NULL,
    labor_hours DOUBLE PRECISION DEFAULT 0,
    notes TEXT
);

CREATE INDEX IF NOT EXISTS idx_quote_items_quote_id ON quote_items (quote_id);

CREATE TABLE IF NOT EXISTS quote_outcomes (
    id SERIAL PRIMARY KEY,
    quote_id INTEGER REFERENCES quotes (id),
    outcome TEXT NOT NULL,
    outcome_reason TEXT,
    customer_feedback TEXT,
    actual_installation_cost DOUBLE PRECISION,
    actual_installation_time DOUBLE PRECISION,
    performance_rating INTEGER,
    issues_encountered TEXT,
    lessons_learned TEXT,
    competitor_product TEXT,
    competitor_price DOUBLE PRECISION,
    follow_up_opportunities TEXT,
    recorded_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS ai_learning_patterns (
    id SERIAL PRIMARY KEY,
    pattern_type TEXT NOT NULL,
    pattern_key TEXT NOT NULL,
    pattern_data JSONB NOT NULL,
    confidence_score DOUBLE PRECISION NOT NULL,
    success_rate DOUBLE PRECISION,
    sample_size INTEGER NOT NULL,
    industry TEXT,
    user_count_range TEXT,
    last_validated TIMESTAMPTZ DEFAULT NOW(),
    created_at TIMESTAMPTZ DEFAULT NOW(),
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE (pattern_type, pattern_key)
);

CREATE INDEX IF NOT EXISTS idx_patterns_relevance
    ON ai_learning_patterns (confidence_score DESC, sample_size DESC);

CREATE TABLE IF NOT EXISTS ai_learning_accumulators (
    pattern_type TEXT NOT NULL,
    pattern_key TEXT NOT NULL,
    state JSONB NOT NULL,
    updated_at TIMESTAMPTZ DEFAULT NOW(),
    PRIMARY KEY (pattern_type, pattern_key)
);

CREATE TABLE IF NOT EXISTS ai_interactions_enhanced (
    id SERIAL PRIMARY KEY,
    session_id TEXT NOT NULL,
    user_input TEXT,
    intent_classification TEXT,
    quote_id INTEGER REFERENCES quotes (id),
    user_satisfaction INTEGER,
    follow_up_required BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_interactions_session
    ON ai_interactions_enhanced (session_id, created_at DESC);
"""
