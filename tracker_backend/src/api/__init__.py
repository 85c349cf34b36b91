"""
FastAPI tracker backend package.

Sections, tasks and articles with owner-scoped storage. The application
object lives in `src.api.main`.
"""
