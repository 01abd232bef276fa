"""
Typed tool schemas for Bragent.

Provides Pydantic models for every tool the oracle may call and for every
browser action a BrowserExecutionPort executes. Raw tool calls are decoded
once, at the oracle boundary, into a ToolInvocation; the agent loop never
dispatches on raw strings or freeform dicts.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


class ToolDecodeError(ValueError):
    """Raised when a tool call names an unknown tool or has invalid arguments."""


class ToolName(str, Enum):
    """The fixed tool set exposed to the oracle."""
    NAVIGATE = "navigate"
    CLICK = "click"
    CLICK_TEXT = "click_text"
    TYPE_TEXT = "type_text"
    SCROLL = "scroll"
    PRESS_KEY = "press_key"
    HOVER = "hover"
    WAIT = "wait"
    GO_BACK = "go_back"
    REFRESH = "refresh"
    SELECT_OPTION = "select_option"
    ASK_USER = "ask_user"
    CONFIRM_ACTION = "confirm_action"
    EXTRACT_TEXT = "extract_text"
    COMPLETE_TASK = "complete_task"


def _require_text(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{what} cannot be empty")
    return value.strip()


# =============================================================================
# Tool Argument Schemas
# =============================================================================

class NavigateArgs(BaseModel):
    """Go to the given URL."""

    url: str = Field(description="URL to open (http:// or https://)")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = _require_text(v, "URL")
        if not v.startswith(("http://", "https://", "file://")):
            # Assume https if no protocol
            v = f"https://{v}"
        return v


class ClickArgs(BaseModel):
    """Click an element. Use a selector from the page element list."""

    selector: str = Field(description="CSS selector of the element to click")
    description: Optional[str] = Field(
        default=None,
        description="What the element is (used for logging and safety checks)",
    )

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, v: str) -> str:
        return _require_text(v, "Selector")


class ClickTextArgs(BaseModel):
    """Click the element whose visible text matches."""

    text: str = Field(description="Visible text of the element")

    @field_validator("text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        return _require_text(v, "Text")


class TypeTextArgs(BaseModel):
    """Type text into an input field."""

    selector: str = Field(description="CSS selector of the input field")
    text: str = Field(description="Text to type")

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, v: str) -> str:
        return _require_text(v, "Selector")


class ScrollArgs(BaseModel):
    """Scroll the page to reveal more elements."""

    direction: Literal["up", "down"] = Field(default="down", description="Scroll direction")
    amount: int = Field(default=500, ge=1, le=20000, description="Pixels to scroll")


class PressKeyArgs(BaseModel):
    """Press a keyboard key (Enter, Escape, Tab, ArrowDown, ...)."""

    key: str = Field(description="Key name")

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        return _require_text(v, "Key")


class HoverArgs(BaseModel):
    """Move the mouse over an element."""

    selector: str = Field(description="CSS selector of the element")

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, v: str) -> str:
        return _require_text(v, "Selector")


class WaitArgs(BaseModel):
    """Wait for the page to settle."""

    milliseconds: int = Field(ge=0, le=60000, description="Time to wait in milliseconds")


class NoArgs(BaseModel):
    """Tool without arguments."""


class SelectOptionArgs(BaseModel):
    """Choose an option of a <select> element."""

    selector: str = Field(description="CSS selector of the select element")
    value: str = Field(description="Option value to select")

    @field_validator("selector")
    @classmethod
    def validate_selector(cls, v: str) -> str:
        return _require_text(v, "Selector")


class AskUserArgs(BaseModel):
    """Ask the user for PERSONAL data only (address, phone, credentials)."""

    question: str = Field(description="Question for the user")


class ConfirmActionArgs(BaseModel):
    """Ask the user to confirm before doing something important."""

    question: str = Field(description="What to confirm")
    action_description: Optional[str] = Field(
        default=None,
        description="The action that will be performed after confirmation",
    )


class ExtractTextArgs(BaseModel):
    """Return text of an element, or the main page content."""

    model_config = ConfigDict(populate_by_name=True)

    selector: Optional[str] = Field(
        default=None,
        description="CSS selector; omit to extract the main page content",
    )
    max_length: int = Field(
        default=2000,
        ge=1,
        le=50000,
        alias="maxLength",
        description="Maximum text length",
    )


class CompleteTaskArgs(BaseModel):
    """Finish the task and report the outcome to the user."""

    success: bool = Field(description="Whether the task was accomplished")
    summary: str = Field(description="FULL answer for the user, including any information found")


TOOL_ARGUMENT_SCHEMAS: dict[ToolName, type[BaseModel]] = {
    ToolName.NAVIGATE: NavigateArgs,
    ToolName.CLICK: ClickArgs,
    ToolName.CLICK_TEXT: ClickTextArgs,
    ToolName.TYPE_TEXT: TypeTextArgs,
    ToolName.SCROLL: ScrollArgs,
    ToolName.PRESS_KEY: PressKeyArgs,
    ToolName.HOVER: HoverArgs,
    ToolName.WAIT: WaitArgs,
    ToolName.GO_BACK: NoArgs,
    ToolName.REFRESH: NoArgs,
    ToolName.SELECT_OPTION: SelectOptionArgs,
    ToolName.ASK_USER: AskUserArgs,
    ToolName.CONFIRM_ACTION: ConfirmActionArgs,
    ToolName.EXTRACT_TEXT: ExtractTextArgs,
    ToolName.COMPLETE_TASK: CompleteTaskArgs,
}

TOOL_DESCRIPTIONS: dict[ToolName, str] = {
    ToolName.NAVIGATE: "Open the given URL",
    ToolName.CLICK: "Click an element. Use a selector FROM the page element list.",
    ToolName.CLICK_TEXT: "Click an element by its visible text",
    ToolName.TYPE_TEXT: "Type text into an input field",
    ToolName.SCROLL: "Scroll the page to see more elements",
    ToolName.PRESS_KEY: "Press a key (Enter, Escape, Tab, ...)",
    ToolName.HOVER: "Hover over an element",
    ToolName.WAIT: "Wait for a number of milliseconds",
    ToolName.GO_BACK: "Go back in browser history",
    ToolName.REFRESH: "Reload the current page",
    ToolName.SELECT_OPTION: "Select an option in a dropdown",
    ToolName.ASK_USER: "Ask the user for PERSONAL data (address, phone, password). Not for 'how to do X'.",
    ToolName.CONFIRM_ACTION: "Ask the user to confirm an important step",
    ToolName.EXTRACT_TEXT: "Extract text from the page when the user asks to read or show content",
    ToolName.COMPLETE_TASK: "Finish the task. Put the complete answer for the user in summary.",
}

# Tools handled by the agent loop itself rather than the browser
CONTROL_TOOLS = frozenset({ToolName.ASK_USER, ToolName.CONFIRM_ACTION, ToolName.COMPLETE_TASK})


# =============================================================================
# Browser Action Requests
# =============================================================================

class _BrowserAction(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Compact dict sent to an execution surface."""
        return self.model_dump(exclude_none=True, by_alias=True)


class NavigateAction(_BrowserAction):
    type: Literal["navigate"] = "navigate"
    url: str


class ClickAction(_BrowserAction):
    type: Literal["click"] = "click"
    selector: str


class TypeTextAction(_BrowserAction):
    type: Literal["type_text"] = "type_text"
    selector: str
    text: str


class ScrollAction(_BrowserAction):
    type: Literal["scroll"] = "scroll"
    direction: Literal["up", "down"] = "down"
    amount: int = 500


class WaitAction(_BrowserAction):
    type: Literal["wait"] = "wait"
    amount: int = 1000


class PressKeyAction(_BrowserAction):
    type: Literal["press_key"] = "press_key"
    key: str


class HoverAction(_BrowserAction):
    type: Literal["hover"] = "hover"
    selector: str


class SelectAction(_BrowserAction):
    type: Literal["select"] = "select"
    selector: str
    value: str


class GoBackAction(_BrowserAction):
    type: Literal["go_back"] = "go_back"


class GoForwardAction(_BrowserAction):
    type: Literal["go_forward"] = "go_forward"


class RefreshAction(_BrowserAction):
    type: Literal["refresh"] = "refresh"


class ExtractTextAction(_BrowserAction):
    type: Literal["extract_text"] = "extract_text"
    selector: Optional[str] = None
    max_length: int = Field(default=2000, alias="maxLength")


class ScreenshotAction(_BrowserAction):
    type: Literal["screenshot"] = "screenshot"
    label: Optional[str] = None


BrowserActionRequest = Annotated[
    Union[
        NavigateAction,
        ClickAction,
        TypeTextAction,
        ScrollAction,
        WaitAction,
        PressKeyAction,
        HoverAction,
        SelectAction,
        GoBackAction,
        GoForwardAction,
        RefreshAction,
        ExtractTextAction,
        ScreenshotAction,
    ],
    Field(discriminator="type"),
]

_browser_action_adapter: TypeAdapter = TypeAdapter(BrowserActionRequest)


def parse_browser_action(data: dict[str, Any]) -> BrowserActionRequest:
    """Validate a wire dict into a typed browser action.

    Raises:
        ValidationError: If the type is unknown or required fields are missing
    """
    return _browser_action_adapter.validate_python(data)


# =============================================================================
# Tool Invocations
# =============================================================================

@dataclass(frozen=True)
class ToolInvocation:
    """A decoded tool call requested by the oracle.

    Attributes:
        id: Provider-assigned call id, referenced by the tool result message
        name: Which tool
        arguments: Validated arguments model for that tool
    """
    id: str
    name: ToolName
    arguments: BaseModel

    @property
    def selector(self) -> Optional[str]:
        return getattr(self.arguments, "selector", None)

    def arguments_dict(self) -> dict[str, Any]:
        return self.arguments.model_dump(exclude_none=True, by_alias=True)


def decode_tool_call(
    call_id: str,
    name: str,
    raw_arguments: Union[str, dict[str, Any], None],
) -> ToolInvocation:
    """Decode a raw provider tool call into a ToolInvocation.

    Args:
        call_id: Provider tool call id
        name: Tool name as sent by the oracle
        raw_arguments: JSON string or already-parsed dict

    Returns:
        The typed invocation

    Raises:
        ToolDecodeError: Unknown tool, unparsable JSON or invalid arguments
    """
    try:
        tool = ToolName(name)
    except ValueError:
        raise ToolDecodeError(f"Unknown tool: {name}") from None

    if raw_arguments is None or raw_arguments == "":
        args: Any = {}
    elif isinstance(raw_arguments, str):
        try:
            args = json.loads(raw_arguments)
        except json.JSONDecodeError as e:
            raise ToolDecodeError(f"Could not parse arguments for {name}: {e}") from e
    else:
        args = raw_arguments

    if not isinstance(args, dict):
        raise ToolDecodeError(f"Arguments for {name} must be an object")

    schema = TOOL_ARGUMENT_SCHEMAS[tool]
    try:
        validated = schema.model_validate(args)
    except ValidationError as e:
        raise ToolDecodeError(f"Invalid arguments for {name}: {e.errors()[0]['msg']}") from e

    return ToolInvocation(id=call_id, name=tool, arguments=validated)


def to_browser_action(invocation: ToolInvocation) -> Optional[BrowserActionRequest]:
    """Map a tool invocation onto the browser action it performs.

    Returns:
        The action, or None for control tools handled by the loop
    """
    args = invocation.arguments
    name = invocation.name

    if name in CONTROL_TOOLS:
        return None
    if name == ToolName.NAVIGATE:
        return NavigateAction(url=args.url)
    if name == ToolName.CLICK:
        return ClickAction(selector=args.selector)
    if name == ToolName.CLICK_TEXT:
        # "text:" prefix is understood by both execution surfaces
        return ClickAction(selector=f"text:{args.text}")
    if name == ToolName.TYPE_TEXT:
        return TypeTextAction(selector=args.selector, text=args.text)
    if name == ToolName.SCROLL:
        return ScrollAction(direction=args.direction, amount=args.amount)
    if name == ToolName.PRESS_KEY:
        return PressKeyAction(key=args.key)
    if name == ToolName.HOVER:
        return HoverAction(selector=args.selector)
    if name == ToolName.WAIT:
        return WaitAction(amount=args.milliseconds)
    if name == ToolName.GO_BACK:
        return GoBackAction()
    if name == ToolName.REFRESH:
        return RefreshAction()
    if name == ToolName.SELECT_OPTION:
        return SelectAction(selector=args.selector, value=args.value)
    if name == ToolName.EXTRACT_TEXT:
        return ExtractTextAction(selector=args.selector, max_length=args.max_length)
    raise ToolDecodeError(f"No browser action for tool: {name.value}")


def action_signature(invocation: ToolInvocation, prefix_length: int = 50) -> str:
    """Signature used by the stagnation detector.

    Clicks on different elements are different signatures, so the selector
    prefix is part of it whenever the tool has one.
    """
    selector = invocation.selector
    if selector:
        return f"{invocation.name.value}:{selector[:prefix_length]}"
    return invocation.name.value


# =============================================================================
# Schema Registry
# =============================================================================

def _strip_titles(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {k: _strip_titles(v) for k, v in schema.items() if k != "title"}
    if isinstance(schema, list):
        return [_strip_titles(v) for v in schema]
    return schema


def _function_definition(tool: ToolName) -> dict[str, Any]:
    parameters = _strip_titles(TOOL_ARGUMENT_SCHEMAS[tool].model_json_schema(by_alias=True))
    parameters.setdefault("properties", {})
    parameters.setdefault("required", [])
    parameters.pop("description", None)
    return {
        "type": "function",
        "function": {
            "name": tool.value,
            "description": TOOL_DESCRIPTIONS[tool],
            "parameters": parameters,
        },
    }


TOOL_DEFINITIONS: list[dict[str, Any]] = [_function_definition(tool) for tool in ToolName]
