"""Transport-level fetchers for the detection backend (pull: HTTP, push: websocket)."""
