"""
Agent layer: personas and the invoker that runs one task per completion call.

Roles:
- pm: plans and reviews
- researcher / writer / translator: the news workflow
- analyst / developer: the repository workflow
- designer: available to custom graphs
"""

from .invoker import AgentInvoker
from .personas import PERSONAS, Persona, get_persona


__all__ = [
    "AgentInvoker",
    "PERSONAS",
    "Persona",
    "get_persona",
]
