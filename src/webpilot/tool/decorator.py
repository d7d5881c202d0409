"""
``@tool``: declare a browser tool once and get its ``tools/list`` entry and
argument validation for free.

    @tool(description="Read the rendered text of the page", capabilities=[Capability.BROWSER])
    async def get_page_content(ctx, selector: Optional[str] = None, session_id: Optional[str] = None):
        '''
        Args:
            selector: Limit the text to this element.
        '''

Parameter names, annotations and defaults come from the signature, the
per-parameter descriptions from the ``Args:`` block of the docstring. The
leading ``ctx`` is filled in by the executor and is not advertised.
"""

import inspect
import re
from dataclasses import dataclass, field
from functools import wraps
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Optional,
    Set,
    Type,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import BaseModel, ConfigDict, create_model

from .capability import Capability, expand_capabilities

CONTEXT_PARAM = "ctx"

_SCALARS: Dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
    type(None): "null",
}

_SECTION_START = re.compile(r"^(args|arguments|parameters):\s*$", re.IGNORECASE)
_SECTION_END = re.compile(r"^(returns?|raises|yields|examples?|notes?):\s*$", re.IGNORECASE)
_ARG_LINE = re.compile(r"^(?P<name>\w+)\s*(\([^)]*\))?\s*:\s*(?P<text>.*)$")


def python_type_to_json_schema(annotation: Any) -> Dict[str, Any]:
    """JSON schema fragment for a parameter annotation (strings when unsure)."""
    origin, args = get_origin(annotation), get_args(annotation)

    if origin is Union:
        members = [arg for arg in args if arg is not type(None)]
        return python_type_to_json_schema(members[0]) if len(members) == 1 else {"type": "string"}
    if origin is Literal:
        values = list(args)
        ints = all(isinstance(v, int) and not isinstance(v, bool) for v in values)
        return {"type": "integer" if ints else "string", "enum": values}
    if origin in (list, set, tuple):
        return {"type": "array", "items": python_type_to_json_schema(args[0] if args else Any)}
    if origin is dict:
        schema: Dict[str, Any] = {"type": "object"}
        if len(args) == 2 and args[1] is not Any:
            schema["additionalProperties"] = python_type_to_json_schema(args[1])
        return schema
    return {"type": _SCALARS.get(annotation, "string")}


def _docstring_args(func: Callable) -> Dict[str, str]:
    collected: Dict[str, List[str]] = {}
    current: Optional[str] = None
    in_args = False
    for raw in (inspect.getdoc(func) or "").splitlines():
        line = raw.strip()
        if _SECTION_START.match(line):
            in_args, current = True, None
        elif _SECTION_END.match(line):
            in_args, current = False, None
        elif in_args and line:
            match = _ARG_LINE.match(line)
            if match:
                current = match.group("name")
                collected[current] = [match.group("text")]
            elif current:
                collected[current].append(line)
    return {name: " ".join(part for part in parts if part).strip() for name, parts in collected.items()}


@dataclass
class ToolParam:
    name: str
    type: Any
    description: str
    required: bool
    default: Any = None

    def to_json_schema(self) -> Dict[str, Any]:
        schema = python_type_to_json_schema(self.type)
        schema["description"] = self.description
        if not self.required and self.default is not None:
            schema["default"] = self.default
        return schema


@dataclass
class ToolMetadata:
    """Everything the registry, dispatcher and executor need to know about a tool."""

    name: str
    description: str
    capabilities: Set[Capability]
    parameters: List[ToolParam]
    navigates: bool
    session_bound: bool
    read_only: bool
    func: Callable
    _model: Optional[Type[BaseModel]] = field(default=None, init=False, repr=False, compare=False)

    @property
    def parameter_names(self) -> Set[str]:
        return {param.name for param in self.parameters}

    @property
    def required_parameters(self) -> List[str]:
        return [param.name for param in self.parameters if param.required]

    def to_json_schema(self) -> Dict[str, Any]:
        """The ``tools/list`` entry."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": {param.name: param.to_json_schema() for param in self.parameters},
                "required": self.required_parameters,
                "additionalProperties": False,
            },
            "annotations": {
                "readOnlyHint": self.read_only,
                "openWorldHint": Capability.NETWORK in expand_capabilities(self.capabilities),
            },
        }

    def _arguments_model(self) -> Type[BaseModel]:
        if self._model is None:
            fields = {
                param.name: (param.type, ... if param.required else param.default)
                for param in self.parameters
            }
            self._model = create_model(
                f"{self.name}_arguments",
                __config__=ConfigDict(extra="forbid"),
                **fields,
            )
        return self._model

    def validate_arguments(self, arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Coerce raw call arguments, filling defaults.

        Raises pydantic ``ValidationError`` for missing, mistyped or unknown
        arguments.
        """
        parsed = self._arguments_model().model_validate(arguments or {})
        return {name: getattr(parsed, name) for name in (p.name for p in self.parameters)}

    async def execute(self, ctx: Any, **kwargs: Any) -> Any:
        return await self.func(ctx, **kwargs)


def _collect_params(func: Callable) -> List[ToolParam]:
    hints = get_type_hints(func)
    docs = _docstring_args(func)
    skipped_kinds = (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    params = []
    for pname, spec in inspect.signature(func).parameters.items():
        if pname in ("self", CONTEXT_PARAM) or spec.kind in skipped_kinds:
            continue
        required = spec.default is inspect.Parameter.empty
        params.append(
            ToolParam(
                name=pname,
                type=hints.get(pname, str),
                description=docs.get(pname) or pname.replace("_", " ").capitalize(),
                required=required,
                default=None if required else spec.default,
            )
        )
    return params


def tool(
    description: str,
    capabilities: Optional[Iterable[Capability]] = None,
    name: Optional[str] = None,
    *,
    navigates: bool = False,
    session_bound: bool = True,
    read_only: bool = False,
) -> Callable:
    """Mark an async function as a tool.

    Args:
        description: Shown to clients in ``tools/list``.
        capabilities: Resources the tool touches; defaults to ``Capability.NONE``.
        name: Tool name, the function name when omitted.
        navigates: The tool loads a target address whose host may pick the session.
        session_bound: The tool runs against a session page.
        read_only: The tool changes neither page nor registry state.
    """
    caps = set(capabilities or [Capability.NONE])

    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"Tool {func.__name__} must be an async function")

        metadata = ToolMetadata(
            name=name or func.__name__,
            description=description,
            capabilities=caps,
            parameters=_collect_params(func),
            navigates=navigates,
            session_bound=session_bound,
            read_only=read_only,
            func=func,
        )

        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await func(*args, **kwargs)

        wrapper.metadata = metadata
        return wrapper

    return decorator
