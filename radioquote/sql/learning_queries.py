"""
Parameterized SQL for the learning engine.

Pattern rows and accumulator state are stored as JSONB; values are passed as
JSON text and cast with ``::jsonb``.
"""

# =============================================================================
# QUOTE LOADING
# =============================================================================

LEARNING_QUOTE = """
    SELECT q.id, q.system_type, q.total_amount, c.industry, c.user_count
    FROM quotes q
    LEFT JOIN clients c ON q.client_id = c.id
    WHERE q.id = $1
"""

# =============================================================================
# ACCUMULATORS
# =============================================================================

SELECT_ACCUMULATOR = """
    SELECT state FROM ai_learning_accumulators
    WHERE pattern_type = $1 AND pattern_key = $2
"""

UPSERT_ACCUMULATOR = """
    INSERT INTO ai_learning_accumulators (pattern_type, pattern_key, state, updated_at)
    VALUES ($1, $2, $3::jsonb, NOW())
    ON CONFLICT (pattern_type, pattern_key) DO UPDATE SET
        state = EXCLUDED.state,
        updated_at = NOW()
"""

SELECT_ACCUMULATORS_BY_TYPE = """
    SELECT pattern_type, pattern_key, state
    FROM ai_learning_accumulators
    WHERE pattern_type = ANY($1::text[])
    ORDER BY pattern_type, pattern_key
"""

# =============================================================================
# PATTERNS
# =============================================================================

UPSERT_PATTERN = """
    INSERT INTO ai_learning_patterns (
        pattern_type, pattern_key, pattern_data, confidence_score, success_rate,
        sample_size, industry, user_count_range, last_validated, created_at, updated_at
    ) VALUES ($1, $2, $3::jsonb, $4, $5, $6, $7, $8, NOW(), NOW(), NOW())
    ON CONFLICT (pattern_type, pattern_key) DO UPDATE SET
        pattern_data = EXCLUDED.pattern_data,
        confidence_score = EXCLUDED.confidence_score,
        success_rate = EXCLUDED.success_rate,
        sample_size = EXCLUDED.sample_size,
        industry = EXCLUDED.industry,
        user_count_range = EXCLUDED.user_count_range,
        last_validated = NOW(),
        updated_at = NOW()
"""

RELEVANT_PATTERNS = """
    SELECT id, pattern_type, pattern_key, pattern_data, confidence_score,
           success_rate, sample_size, industry, user_count_range, last_validated
    FROM ai_learning_patterns
    WHERE confidence_score >= $1
      AND sample_size >= $2
      AND (industry IS NULL OR industry = $3)
      AND (user_count_range IS NULL OR user_count_range = $4)
    ORDER BY confidence_score DESC, sample_size DESC
    LIMIT $5
"""

# =============================================================================
# FEEDBACK
# =============================================================================

UPDATE_LATEST_INTERACTION = """
    UPDATE ai_interactions_enhanced
    SET user_satisfaction = $2, follow_up_required = $3
    WHERE id = (
        SELECT id FROM ai_interactions_enhanced
        WHERE session_id = $1
        ORDER BY created_at DESC, id DESC
        LIMIT 1
    )
    RETURNING id, intent_classification
"""
