"""Chat request handling: identity, sanitizing, prompt assembly, retries and streaming."""
