"""
Tests for the settlement app.

This package contains test modules for:
- test_commission.py: Commission split arithmetic
- test_locks.py: Distributed and optimistic locking
- test_models.py: Model properties and database constraints
- test_state_transitions.py: django-fsm transitions
- test_tasks.py: Celery periodic tasks
- test_views.py: API endpoints

Service, adapter and webhook tests live beside their packages.

Usage:
    pytest settlement/
    pytest settlement/services/tests/test_ledger.py
"""
