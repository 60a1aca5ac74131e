"""Serialize registry tools into provider-native tool schemas."""

import copy
from typing import Any, Dict, Iterable, List

from ..db.models import Tool


def normalize_schema(schema: Any) -> Dict[str, Any]:
    """
    Return a provider-safe copy of a JSON schema.

    The root is always an object schema, and every array node gets an `items`
    schema (OpenAI rejects arrays without one).
    """
    if not isinstance(schema, dict) or not schema:
        return {"type": "object", "properties": {}}

    normalized = copy.deepcopy(schema)
    normalized.setdefault("type", "object")
    if normalized["type"] == "object":
        normalized.setdefault("properties", {})
    _fill_array_items(normalized)
    return normalized


def _fill_array_items(node: Any) -> None:
    if isinstance(node, dict):
        if node.get("type") == "array" and not isinstance(node.get("items"), dict):
            node["items"] = {"type": "string"}
        for value in node.values():
            _fill_array_items(value)
    elif isinstance(node, list):
        for value in node:
            _fill_array_items(value)


class ToolSchemaAdapter:
    """Build the `tools` parameter for each provider from registry rows."""

    @staticmethod
    def for_openai(tools: Iterable[Tool]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "name": tool.tool_key,
                "description": tool.description or tool.name,
                "parameters": normalize_schema(tool.arg_schema),
            }
            for tool in tools
        ]

    @staticmethod
    def for_anthropic(tools: Iterable[Tool]) -> List[Dict[str, Any]]:
        return [
            {
                "name": tool.tool_key,
                "description": tool.description or tool.name,
                "input_schema": normalize_schema(tool.arg_schema),
            }
            for tool in tools
        ]

    @classmethod
    def for_provider(cls, provider: str, tools: Iterable[Tool]) -> List[Dict[str, Any]]:
        if provider == "openai":
            return cls.for_openai(tools)
        return cls.for_anthropic(tools)
