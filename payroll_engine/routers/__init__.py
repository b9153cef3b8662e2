"""
Payroll Engine - Routers Package

FastAPI route handlers.

Routers:
- payroll: computation, approval flow, batches and payments
"""
