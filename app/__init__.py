# ============================================================================
# Token Feed Application Package
# ============================================================================
