"""
Therapy Intake Tests

Unit tests run against a file-backed SQLite database with Redis disabled,
so locks use the in-process fallback and no external service is needed.

Running Tests:
    # Run all tests
    pytest -v

    # Run one module
    pytest tests/unit/test_booking.py -v

Test Coverage:
    - Extraction (LLM path and rule fallback)
    - Reply generation and branch texts
    - Schedule parsing
    - Matching, availability and booking
    - Google Calendar sync over a mock transport
    - Pipeline and tool-calling orchestrators
    - HTTP endpoints
"""
