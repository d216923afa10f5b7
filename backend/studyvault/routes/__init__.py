"""
StudyVault Backend — API Routes Package
=========================================

Route Inventory:
    - ai.py:      /api/ai/*    (provider configs, capabilities, usage, generation)
    - chat.py:    /api/chat/*  (chat turns, session messages, teardown)
    - health.py:  GET /health

Routes stay thin: parse the request, call a service, shape the response.
Owner identity is resolved by routes/dependencies.py.
"""
