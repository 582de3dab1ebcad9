"""
Therapy Calendar Tests

Layout:
    unit/         Pure logic and HTTP routes against in-memory fakes
    integration/  SQLAlchemy repositories on in-memory SQLite (aiosqlite)
    e2e/          Smoke tests against a running server (run explicitly)

Running Tests:
    # Unit and integration tests
    pytest -v

    # Smoke tests (server, PostgreSQL and Redis must be up)
    pytest tests/e2e/smoke_test_e2e.py -v

Test Coverage:
    - Weekly template expansion and date exceptions
    - Booked time subtraction and session type filtering
    - Event overlap detection and optimistic versioning
    - Reminder scheduling and delivery worker
    - Availability cache (fail-open) and notifications
    - Error mapping of the HTTP API
"""
