"""
Barbershop booking bot tests.

Running Tests:
    # Unit tests (no external services needed)
    pytest tests/unit -v

    # Run a single module
    pytest tests/unit/test_conversation_flow.py -v

    # E2E smoke tests against a running instance
    pytest tests/e2e/smoke_test_e2e.py -v

Shared in-memory collaborators live in tests/fakes.py.
"""
