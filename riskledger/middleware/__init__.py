"""Request middleware: logging, timing, rate limiting."""
