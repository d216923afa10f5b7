"""
StudyVault Backend — Services Layer
=====================================

What:  Everything between the HTTP routes and the database.

Service Inventory:
    - llm_base: BaseAIProvider contract and the derived operations
    - openai_service / gemini_service / anthropic_service: vendor adapters
    - provider_factory: adapter construction, default models, config checks
    - registry: per-owner configs, capabilities, key probing, usage
    - error_handler: error taxonomy, notifications, retry
    - response_parser: model-output extraction and fallbacks
    - ai_service: the gateway the routes and chat controller call
    - chat_service: ChatSessionController and empty-session cleanup
    - store: AIStore, the async SQLAlchemy persistence layer
"""
