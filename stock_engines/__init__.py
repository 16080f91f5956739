"""
Stock engines: pure computation over stock data.

Modules here take plain values (or objects exposing the documented
attributes) and return frozen results.  No database, no clock, no I/O.
"""
