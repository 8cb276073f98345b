"""Code shared by the message service and the client core."""
