"""Request and response schemas for the connection API."""
