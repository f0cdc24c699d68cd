"""Live multiple-choice quiz sessions: engine, persistence and HTTP API."""
