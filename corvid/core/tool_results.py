"""Conversion of tool output into provider-facing function-response parts."""

from __future__ import annotations

from typing import Any

Part = dict[str, Any]

SUCCESS_TEXT = "Tool execution succeeded."


def function_response_part(call_id: str, name: str, output: str) -> Part:
    return {"functionResponse": {"id": call_id, "name": name, "response": {"output": output}}}


def function_error_part(call_id: str, name: str, message: str) -> Part:
    return {"functionResponse": {"id": call_id, "name": name, "response": {"error": message}}}


def _mime_type(part: Part) -> str | None:
    for key in ("inlineData", "fileData"):
        if isinstance(part.get(key), dict):
            return part[key].get("mimeType", "application/octet-stream")
    return None


def encode_tool_response(call_id: str, name: str, llm_content: Any) -> list[Part]:
    """Wrap a tool's ``llm_content`` as function-response parts.

    Plain text becomes one wrapper part. Several parts become a success
    wrapper followed by the original parts. Binary parts get a placeholder
    wrapper naming their media type, followed by the part itself. A part that
    is already a function response is passed through.
    """
    if llm_content is None:
        return [function_response_part(call_id, name, SUCCESS_TEXT)]

    if isinstance(llm_content, str):
        return [function_response_part(call_id, name, llm_content)]

    if isinstance(llm_content, list):
        if len(llm_content) == 1:
            return encode_tool_response(call_id, name, llm_content[0])
        return [function_response_part(call_id, name, SUCCESS_TEXT), *llm_content]

    if isinstance(llm_content, dict):
        if "functionResponse" in llm_content:
            response = llm_content["functionResponse"].get("response") or {}
            nested = response.get("content")
            if isinstance(nested, list):
                text = "\n".join(p.get("text", "") for p in nested if isinstance(p, dict))
                return [function_response_part(call_id, name, text)]
            return [llm_content]

        mime = _mime_type(llm_content)
        if mime is not None:
            return [
                function_response_part(
                    call_id, name, f"Binary content of type {mime} was processed."
                ),
                llm_content,
            ]

        if "text" in llm_content:
            return [function_response_part(call_id, name, str(llm_content["text"]))]

    return [function_response_part(call_id, name, SUCCESS_TEXT)]


def response_text(parts: list[Part]) -> str:
    """Flatten encoded parts to the text stored in a tool message."""
    texts: list[str] = []
    for part in parts:
        if "functionResponse" in part:
            response = part["functionResponse"].get("response") or {}
            output = response.get("output", response.get("error"))
            if output is not None:
                texts.append(str(output))
        elif "text" in part:
            texts.append(str(part["text"]))
    return "\n".join(t for t in texts if t)
