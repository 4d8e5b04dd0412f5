"""
FastAPI routers for import submission, job tracking and price quotes.
"""
