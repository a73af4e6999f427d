"""
Service layer for business logic.

This package contains the recipient validator, the sequential payment
executor and the batch service chaining parse, validation, fee
estimation and execution.
"""
