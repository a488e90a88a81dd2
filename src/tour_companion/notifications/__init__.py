"""Server-side notification fan-out, rate limiting and broadcast verification."""
