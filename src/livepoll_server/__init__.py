"""livepoll_server — FastAPI server exposing the live polling SDK.

REST endpoints for participants (bootstrap, submission), presenters
(presentation control, results, display gates) and account flows, plus a
WebSocket change feed that streams committed row changes.
"""
