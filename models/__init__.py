"""Row models for records supplied to the flag engine."""
