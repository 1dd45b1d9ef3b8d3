"""
Pytest fixtures for the TOS client test suite.

- fake_tos: in-memory TOS server served through ``httpx.MockTransport``
"""
