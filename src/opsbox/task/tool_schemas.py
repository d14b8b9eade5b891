# src/opsbox/task/tool_schemas.py
"""
Model-facing function definitions for the container task tools.

These schemas are sent to the model gateway on every loop iteration and
constrain the model to the closed tool set handled by
:mod:`opsbox.task.handlers`. Argument names are camelCase because they are
part of the model-facing surface.
"""

from typing import Any, Dict, List

TIMEOUT_CHOICES = ["10sec", "30sec", "1min", "2min", "5min", "10min", "15min"]
PLAN_STATES = ["pending", "in-progress", "completed", "failed", "skipped"]

RUN_COMMAND_DEF: Dict[str, Any] = {
    "name": "runCommand",
    "description": (
        "Execute a non-interactive shell command in the container, equivalent to "
        '`<shell> -c "<command>"`, and wait for the result. Shell state does not '
        "persist between commands. Prefer `stdin` over long command-line arguments."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute in the container.",
                "minLength": 1,
            },
            "workingDir": {
                "type": "string",
                "description": "Existing absolute directory inside the container to run the command in.",
                "minLength": 1,
            },
            "reasoning": {
                "type": "string",
                "description": "Why this command is needed for the task.",
            },
            "shell": {
                "type": "string",
                "description": "Shell used to run the command. Some images do not ship bash.",
                "enum": ["bash", "/bin/sh"],
            },
            "stdin": {
                "type": "string",
                "description": "Text passed to the command on stdin, e.g. script contents for `cat | python3`.",
            },
            "truncMode": {
                "type": "string",
                "description": (
                    'How to shorten long output: "start" keeps the beginning, "end" keeps the '
                    'end, "none" keeps everything (only for output known to be short).'
                ),
                "enum": ["start", "end", "none"],
            },
            "timeout": {
                "type": "string",
                "description": "How long to wait for the command to complete.",
                "enum": TIMEOUT_CHOICES,
            },
        },
        "required": ["command", "workingDir", "reasoning"],
    },
}

COMPLETE_TASK_DEF: Dict[str, Any] = {
    "name": "completeTask",
    "description": "Mark the container task as successfully completed.",
    "parameters": {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "A summary of what was accomplished and where the results are.",
            },
        },
        "required": ["summary"],
    },
}

FAIL_TASK_DEF: Dict[str, Any] = {
    "name": "failTask",
    "description": "Mark the container task as failed.",
    "parameters": {
        "type": "object",
        "properties": {
            "reason": {
                "type": "string",
                "description": "Why the task could not be completed.",
            },
        },
        "required": ["reason"],
    },
}

WRAP_CONTEXT_DEF: Dict[str, Any] = {
    "name": "wrapContext",
    "description": (
        "Replace the conversation so far with a summary to free up context. Everything "
        "not in the summary is forgotten, so include the plan, progress, important "
        "files and the next step."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "summary": {
                "type": "string",
                "description": "Summary of prior steps, findings, important files and the next step.",
            },
        },
        "required": ["summary"],
    },
}

_PLAN_STEP_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": "A single step of the execution plan.",
    "properties": {
        "id": {"type": "string", "description": "Unique identifier of the step."},
        "description": {"type": "string", "description": "Brief description of the step."},
        "dependsOn": {
            "type": "array",
            "description": "Ids of steps this step depends on.",
            "items": {"type": "string"},
        },
        "state": {"type": "string", "enum": PLAN_STATES},
    },
    "required": ["id", "description"],
}

SET_EXECUTION_PLAN_DEF: Dict[str, Any] = {
    "name": "setExecutionPlan",
    "description": "Record the execution plan to follow, replacing any previous plan.",
    "parameters": {
        "type": "object",
        "properties": {
            "plan": {
                "type": "array",
                "description": "Ordered steps of the plan.",
                "items": _PLAN_STEP_SCHEMA,
            },
        },
        "required": ["plan"],
    },
}

UPDATE_EXECUTION_PLAN_DEF: Dict[str, Any] = {
    "name": "updateExecutionPlan",
    "description": "Report progress against the execution plan. Give progress, or id with state to update one step.",
    "parameters": {
        "type": "object",
        "properties": {
            "id": {"type": "string", "description": "Id of the step to update."},
            "state": {"type": "string", "description": "New state of the step.", "enum": PLAN_STATES},
            "statusUpdate": {"type": "string", "description": "Short status note for the step."},
            "progress": {"type": "string", "description": "Overall progress made so far."},
        },
        "dependencies": {"id": ["state"], "state": ["id"]},
    },
}

COPY_TO_CONTAINER_DEF: Dict[str, Any] = {
    "name": "copyToContainer",
    "description": (
        "Copy a file or directory from the host into an existing container directory. "
        "The host path must be absolute and inside the project root."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "hostPath": {"type": "string", "description": "Absolute host path inside the project root."},
            "containerPath": {"type": "string", "description": "Existing absolute directory in the container."},
        },
        "required": ["hostPath", "containerPath"],
    },
}

COPY_FROM_CONTAINER_DEF: Dict[str, Any] = {
    "name": "copyFromContainer",
    "description": (
        "Copy a file or directory from the container to the host. The host path must be "
        "absolute and inside the project root. The user reviews the file list first."
    ),
    "parameters": {
        "type": "object",
        "properties": {
            "containerPath": {"type": "string", "description": "Absolute path in the container."},
            "hostPath": {"type": "string", "description": "Absolute host path inside the project root."},
        },
        "required": ["containerPath", "hostPath"],
    },
}

CONTAINER_COMMAND_DEFS: List[Dict[str, Any]] = [
    RUN_COMMAND_DEF,
    COMPLETE_TASK_DEF,
    FAIL_TASK_DEF,
    WRAP_CONTEXT_DEF,
    SET_EXECUTION_PLAN_DEF,
    UPDATE_EXECUTION_PLAN_DEF,
    COPY_TO_CONTAINER_DEF,
    COPY_FROM_CONTAINER_DEF,
]


def get_container_command_defs() -> List[Dict[str, Any]]:
    """Return the tool schema sent with every loop iteration."""
    return list(CONTAINER_COMMAND_DEFS)
