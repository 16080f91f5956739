"""Database infrastructure: declarative base, engine, immutability listeners."""
