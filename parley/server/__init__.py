"""HTTP and server-sent event boundary."""
