# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
#   - domain.py: Documents, chunks, citations, findings, sessions
#   - requests.py: API request bodies and AnalysisOptions
#   - responses.py: API response wrappers
#   - function_calls.py: Validation of LLM function-call arguments
# =============================================================================
