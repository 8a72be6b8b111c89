# backend/studybuddy/__init__.py
"""
StudyBuddy backend application package.

This package contains:
- main: FastAPI application entrypoint
- store: persistence gateway (in-memory / MongoDB)
- engine: deadline notification engine
- notifications: email senders
"""
