"""Message Service: messages, threads, pins, reactions and typing."""
