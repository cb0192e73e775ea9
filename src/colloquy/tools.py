"""Function schemas for the ``tools`` generation option.

Decorate a plain function with :func:`tool` and pass the result in
``GenerationOptions(tools=[...])``; it is serialised to the OpenAI
function-calling schema. colloquy never runs tools itself: the model's
tool calls come back on the response and the caller answers them with
``Conversation.add_tool_result``.
"""

import inspect
import json
import re
from typing import Any, Callable

from pydantic import BaseModel, Field

_JSON_TYPES = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "NoneType": "null",
    "dict": "object",
    "list": "array",
    "tuple": "array",
    "set": "array",
}

_ARGS_HEADER = re.compile(r"^\s*(Args|Arguments|Parameters):\s*$")
_GOOGLE_PARAM = re.compile(r"^(\s*)(\w+)(?:\s*\([^)]*\))?:\s*(.*)$")
_SPHINX_PARAM = re.compile(r"^\s*:param\s+(?:\w+\s+)?(\w+):\s*(.*)$")


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Read per-parameter descriptions from a Google or Sphinx docstring."""
    doc = inspect.getdoc(func)
    if not doc:
        return {}

    descriptions: dict[str, str] = {}
    lines = doc.splitlines()

    for line in lines:
        m = _SPHINX_PARAM.match(line)
        if m:
            descriptions[m.group(1)] = m.group(2).strip()
    if descriptions:
        return descriptions

    in_args = False
    param_indent = None
    current = None
    for line in lines:
        if _ARGS_HEADER.match(line):
            in_args = True
            continue
        if not in_args:
            continue
        if not line.strip():
            continue
        indent = len(line) - len(line.lstrip())
        if param_indent is not None and indent < param_indent:
            break
        m = _GOOGLE_PARAM.match(line)
        if m and (param_indent is None or indent == param_indent):
            param_indent = len(m.group(1))
            current = m.group(2)
            descriptions[current] = m.group(3).strip()
        elif current is not None and param_indent is not None and indent > param_indent:
            descriptions[current] += "\n" + line.strip()
        else:
            break
    return descriptions


def _build_parameters_schema(func: Callable) -> tuple[dict[str, Any], list[str]]:
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = param.annotation
        type_name = getattr(annotation, "__name__", "str")
        if annotation is inspect.Parameter.empty:
            type_name = "str"
        properties[name] = {
            "type": _JSON_TYPES.get(type_name, "string"),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {"type": "object", "properties": properties}
    return schema, required


class Tool(BaseModel):
    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Return the function-calling schema instead of the fields."""
        return self.get_schema()

    def model_dump_json(self, **kwargs):
        return json.dumps(self.get_schema())

    def get_schema(self) -> dict[str, Any]:
        parameters, required = _build_parameters_schema(self.func)
        parameters["required"] = required
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
):
    """Wrap a function as a :class:`Tool`.

    Usable bare (``@tool``) or with overrides
    (``@tool(name="lookup", description="...")``). By default the
    function name is the tool name and the docstring summary its
    description.
    """
    def wrap(f: Callable) -> Tool:
        doc = inspect.getdoc(f) or ""
        summary = doc.split("\n\n", 1)[0].strip()
        return Tool(
            func=f,
            name=name or f.__name__,
            description=description if description is not None else summary,
        )

    if func is not None:
        return wrap(func)
    return wrap
