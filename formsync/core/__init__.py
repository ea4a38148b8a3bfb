"""
Core package providing the passive form data model.

Architecture:
- Field paths and snapshot value helpers
- Control tree arena with publish/subscribe
- Outcomes, result handles and dependency maps
- No asyncio scheduling beyond node validation runs

Design Patterns:
- Composite Pattern for groups of controls
- Observer Pattern for change notification
- Builder Pattern for dependency maps
"""
