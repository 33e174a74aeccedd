# =============================================================================
# Property Document Analysis Agent
# =============================================================================
# Extracts structured, cited findings from parsed UK property documents
# (TA6 forms, surveys, searches, title registers, leases, EPCs) with an LLM,
# under a strict shared provider budget.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (documents, analyze, rate limits)
#   ├── agents/       → LangGraph analysis graph, prompts, progressive runs
#   ├── models/       → Pydantic V2 domain, request/response and
#   │                    function-call boundary schemas
#   └── services/     → Chunking, citations, result storage, rate limiting,
#                        LLM providers, summaries, error taxonomy
# =============================================================================
