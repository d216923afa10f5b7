"""
StudyVault Backend — Application Package Initializer
=====================================================

What: The AI provider orchestration layer of the StudyVault study assistant.
Who:  Imported by uvicorn (studyvault.main:app), Alembic, and pytest.

Architecture Note:

    ┌─────────────────────────────────────────────┐
    │        Routes (HTTP) / Chat Controller      │  ← consumers
    ├─────────────────────────────────────────────┤
    │   AIService (resolve config → retry → run)  │  ← uniform gateway
    ├──────────────────────┬──────────────────────┤
    │ Provider adapters    │ Registry / Errors /  │
    │ (OpenAI, Gemini,     │ Response parser      │
    │  Anthropic)          │                      │
    ├──────────────────────┴──────────────────────┤
    │       AIStore (async SQLAlchemy rows)       │  ← persisted state
    └─────────────────────────────────────────────┘
"""

__version__ = "1.0.0"
