"""Chief of Staff: a personal AI assistant that works across your accounts.

Architecture Overview
=====================

Each chat message runs through a **LangGraph** state machine with two nodes:

1. **chatbot** — calls Claude with the conversation, a system prompt built
   from the user's settings, and only the tools the user has connected.

2. **tools** — runs every tool call from that response concurrently through
   the ToolRegistry and feeds the results back, error-flagged on failure.

Routing: chatbot → (tool calls and under 10 iterations?) → tools → chatbot,
otherwise END.

Key Design Decisions
--------------------
- **Capabilities per turn**: connected providers and granted scopes are read
  fresh for every message; Gmail and Calendar tools are gated by Google scope.
- **Tokens**: OAuth tokens are AES-256-GCM encrypted at rest and refreshed on
  demand 5 minutes before expiry, one refresh per (user, provider) at a time.
- **Resilience**: provider clients retry timeouts and 5xx responses with
  exponential backoff (3 attempts); tool failures go back to the model, never
  to the caller.
- **Persistence**: sessions and messages are saved best-effort after the
  answer is computed.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (development).

Package Structure
-----------------
- ``src/agent.py`` — Orchestrator (LangGraph StateGraph)
- ``src/bootstrap.py`` — Builds shared components
- ``src/config.py`` — Configuration from environment / SSM
- ``src/prompts.py`` — System prompt builder
- ``src/server.py`` — FastAPI application
- ``src/main.py`` — CLI chat interface
- ``src/db/`` — SQLAlchemy models and async engine
- ``src/services/`` — Provider clients, OAuth, token and session stores
- ``src/tools/`` — Tool registry, capability resolver, per-provider tools
- ``src/api/`` — FastAPI routes and Pydantic schemas
"""
