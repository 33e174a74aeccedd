# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Contains the core business logic, separated from API handlers:
#   - chunker.py: Line-based overlapping chunks with page/section tracking
#   - citations.py: Locate quoted excerpts in source documents
#   - kv_store.py: Pluggable key-value backend (in-memory, Redis)
#   - result_store.py: Session-scoped documents, findings and sessions
#   - rate_limiter.py: Shared provider budget with a priority queue
#   - llm.py: Function-calling providers (OpenAI-compatible, Anthropic)
#   - tokens.py: tiktoken-based request cost estimation
#   - summary.py: Risk, key findings and recommendations from findings
#   - errors.py: Typed failures with HTTP status and retry hints
# =============================================================================
