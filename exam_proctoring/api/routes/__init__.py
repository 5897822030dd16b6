"""API route modules"""
