"""
Services module for business logic separation.

This module contains service classes that encapsulate business logic,
keeping it separate from API endpoints and database models:
- code_generator / allocator: random codes and collision-free allocation
- link_registry: the short link lifecycle
- access_gate: API key resolution and tier checks
"""
