"""
Assistant Core: tool-calling assistant orchestrator.

Runs chat turns against OpenAI (stateful Responses API) or Anthropic
(stateless replay), executes internal tools with confirmation gating, and
feeds tool results back to the model in a bounded follow-up loop.
"""

__version__ = "0.1.0"
