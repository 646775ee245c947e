"""API routers."""

from work_order_service.routers import health, payments, projects, submissions, work_items

__all__ = ["health", "payments", "projects", "submissions", "work_items"]
