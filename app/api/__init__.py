# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - documents.py: Session-scoped document storage and search
#   - analyze.py: Full and progressive analysis, findings, session polling
#   - rate_limit.py: Shared provider budget snapshot
#   - deps.py: Dependency providers and error → HTTPException mapping
# =============================================================================
