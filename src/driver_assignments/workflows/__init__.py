"""
Workflows Module

Server-mutating driver actions on an assignment:
- ExtensionWorkflow: validate and request a later end time
- CompletionWorkflow: two-phase early completion
"""

from driver_assignments.workflows.completion import CompletionIntent
from driver_assignments.workflows.completion import CompletionWorkflow
from driver_assignments.workflows.extension import ExtensionWorkflow
from driver_assignments.workflows.extension import validate_extension_input

__all__ = [
    "CompletionIntent",
    "CompletionWorkflow",
    "ExtensionWorkflow",
    "validate_extension_input",
]
