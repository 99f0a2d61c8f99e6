"""
API routers package
"""
