"""API layer: routes, request/response schemas and service wiring"""
