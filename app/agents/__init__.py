# =============================================================================
# Agents Package — LangGraph Analysis Orchestration
# =============================================================================
#   - orchestrator.py: LangGraph graph — classify → analyse → questions →
#     summarise, with provider and rate limiter injected per run
#   - classifier.py: Rule-based document typing and progressive priority
#   - prompts.py: Buyer-aware prompts and the two function schemas
#   - analyst.py: Per-document function call → cited findings, fallbacks
#   - questions.py: Question generation with deterministic fallback
#   - progressive.py: Quick scan + background detailed phase per session
# =============================================================================
