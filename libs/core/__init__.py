__all__ = [
    "models",
    "events",
    "errors",
    "schemas",
    "config",
    "cache_store",
    "cache_registry",
    "domain_cache",
    "record_store",
    "sections",
    "claim_validator",
    "trimmer",
    "prompts",
    "agents",
    "state_machine",
    "orchestrator",
    "llm_provider",
    "logging",
]
