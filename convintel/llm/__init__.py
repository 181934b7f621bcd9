"""
LLM Abstraction Layer — Cost-tier routing and inference adapters.

Modules:
- llm_config: Tiers, task types, pricing constants, stage wiring
- router: route_task() tier decisions and ModelUsageTracker
- client: InferenceClient protocol, provider adapters, bounded structured calls
- parsing: Defensive JSON parsing and field coercion
"""
