"""
Workers Package
Command-line call agents for the requester and responder roles
"""
from videokyc.workers.call_agent import CallAgent

__all__ = [
    "CallAgent",
]
