"""Finance research assistant: agent backend and streaming chat client."""
