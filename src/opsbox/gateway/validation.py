# src/opsbox/gateway/validation.py
"""
Validation and recovery of model responses that must call a specific function.

When a request names a ``required_function_name``, the response must hold
exactly one call to that function whose arguments match the function's
JSON schema. A response that does not is sent back to the model once,
together with the validation error, asking for a corrected call. If the
corrected response is still invalid, :class:`FunctionCallValidationError`
is raised.

Arguments are checked with a Draft 7 ``jsonschema`` validator against the
function definition's ``parameters`` schema.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from ..exceptions import FunctionCallValidationError
from ..models import (
    GenerateContentRequest,
    ModelType,
    Part,
    PromptItem,
    ToolCall,
    ToolResponse,
    tool_calls_from_parts,
)
from .base import GenerateContent

logger = logging.getLogger(__name__)

RECOVERY_PROMPT = (
    "Function call was invalid, please analyze the error and respond with corrected function call."
)


def _format_path(path) -> str:
    return "args" + "".join(f"[{p}]" if isinstance(p, int) else f".{p}" for p in path)


def _schema_errors(args: Any, schema: Dict[str, Any]) -> List[str]:
    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        return [f"Function parameters schema is invalid: {e.message}"]

    errors = sorted(Draft7Validator(schema).iter_errors(args), key=lambda err: [str(p) for p in err.absolute_path])
    return [f"{_format_path(err.absolute_path)}: {err.message}" for err in errors]


def validate_function_call(
    call: Optional[ToolCall],
    required_function_name: str,
    calls: Sequence[ToolCall],
    function_defs: Sequence[Dict[str, Any]],
) -> Optional[str]:
    """
    Check a response against the required function.

    Returns:
        A description of the problem, or None if the call is valid
    """
    if call is None:
        return f'Function "{required_function_name}" was not called.'

    if len(calls) != 1:
        return (
            f"You called too many functions({len(calls)})! "
            f"Only one function({required_function_name}) should be called."
        )

    if call.name != required_function_name:
        return (
            f'Function "{call.name}" was called, while the expectation was to get '
            f'"{required_function_name}" function call.'
        )

    function_def = next((d for d in function_defs if d.get("name") == call.name), None)
    if function_def is None:
        return f'Function "{call.name}" is not defined.'

    errors = _schema_errors(call.args, function_def.get("parameters", {}))
    if errors:
        return "; ".join(errors)

    return None


async def validate_and_recover(
    request_args: Sequence[Any],
    result: List[Part],
    generate_fn: GenerateContent,
) -> List[Part]:
    """
    Validate a gateway result and repair it with one extra model call if needed.

    Args:
        request_args: The ``(transcript, request, options)`` the result was produced for
        result: Parts returned by the gateway
        generate_fn: Gateway used for the repair call

    Returns:
        The original result if valid, otherwise the repaired result

    Raises:
        FunctionCallValidationError: If the repaired result is still invalid
    """
    transcript, request, options = request_args
    required = request.required_function_name
    if not required:
        return result

    calls = tool_calls_from_parts(result)
    call = calls[0] if calls else None
    error = validate_function_call(call, required, calls, request.function_defs)
    if error is None:
        return result

    logger.warning(f"Invalid function call for {required}: {error}")
    invalid_call = (call or ToolCall(name=required)).model_copy(deep=True).ensure_id()

    recovery_transcript = list(transcript) + [
        PromptItem.assistant(tool_calls=[invalid_call]),
        PromptItem.user(
            text=RECOVERY_PROMPT,
            tool_responses=[
                ToolResponse(
                    name=invalid_call.name,
                    call_id=invalid_call.id,
                    content=json.dumps({"args": invalid_call.args, "error": error}),
                    is_error=True,
                )
            ],
        ),
    ]
    # Recovery always uses the full model tier
    recovery_request: GenerateContentRequest = request.model_copy(update={"model_type": ModelType.DEFAULT})

    logger.info(f"Trying to recover {required} function call")
    recovered = await generate_fn(recovery_transcript, recovery_request, options)

    recovered_calls = tool_calls_from_parts(recovered)
    recovery_error = validate_function_call(
        recovered_calls[0] if recovered_calls else None,
        required,
        recovered_calls,
        request.function_defs,
    )
    if recovery_error is not None:
        raise FunctionCallValidationError(required, recovery_error, details={"first_error": error})

    logger.info(f"Recovered {required} function call")
    return recovered
