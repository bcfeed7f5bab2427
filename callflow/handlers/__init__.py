"""
HTTP route handlers for the call orchestration service.

Key components:
- dependencies: FastAPI dependencies resolving the caller identity and the
  shared services stored on the application state.
- call_routes: Dashboard endpoints to initiate, list, inspect and hang up calls,
  plus the browser-test signed URL endpoint.
- telephony_routes: Webhooks the telephony provider calls when a call is
  answered and whenever its status changes.
- agent_routes: Minimal registry of voice agents calls can be placed with.
"""
