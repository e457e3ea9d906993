"""Collaborator: a conversational assistant that routes each chat message to
exactly one capability backed by a Graph-style REST API.

Architecture Overview
=====================

Each inbound message drives one sequential pipeline:

1. **router**: a LangGraph StateGraph that loads recent conversation
   memory, asks the decision oracle what to do, optionally resolves a
   natural-language time range, and dispatches to **one** capability.

2. **capabilities**: summariser, search, planner and e-mail handlers.
   Each returns a single ``Result`` (never a raw exception) that the router
   hands back verbatim.

3. **gateway**: ``GraphClient`` issues authenticated HTTP calls with
   classification-aware retries; ``CredentialCache`` keeps the short-lived
   bearer token fresh.

Routing: load_memory → select → (resolve_time_range → select)? → dispatch
         → complete | fail

Key Design Decisions
--------------------
- **Oracle**: Claude via langchain-anthropic, with one bound tool per
  capability plus ``calculate_time_range``.  A stub implementing the same
  ``DecisionPort`` drives the router tests.
- **Resilience**: exponential backoff (3 attempts) for 429, 5xx and
  transport errors; other 4xx fail immediately; stale ETags surface as
  ``ConcurrencyError``.
- **Memory**: SQLite conversation log with automatic fallback to an
  in-memory store when the database cannot be opened.
- **Dual Interface**: FastAPI server (production) + CLI chat loop
  (development/testing).

Package Structure
-----------------
- ``collaborator/agent.py``: wiring of storage, gateway, registry and router
- ``collaborator/router.py``: single-dispatch LangGraph state machine
- ``collaborator/oracle.py``: decision port and the Anthropic implementation
- ``collaborator/timerange.py``: natural-language time range resolution
- ``collaborator/config.py``: configuration from environment variables
- ``collaborator/server.py``: FastAPI application
- ``collaborator/main.py``: CLI chat interface
- ``collaborator/services/``: identity, Graph client, cache, metrics
- ``collaborator/storage/``: conversation memory persistence
- ``collaborator/capabilities/``: capability handlers and registry
- ``collaborator/api/``: FastAPI routes and Pydantic schemas
"""
