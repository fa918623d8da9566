"""
HTTP API for the agent executor.

Usage:
    uvicorn agent_executor.api.main:app --host 0.0.0.0 --port 8000
"""
