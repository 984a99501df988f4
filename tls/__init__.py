"""TLS posture auditing (handshake transcript scanning, certificate checks, grading)."""
