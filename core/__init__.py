"""
Core modules for Lightning batch payments.

This package contains:
- config: Application configuration and settings
- exceptions: Custom exception classes
- exporters: CSV and Excel report export
- logger: Logging configuration
- normalize: Recipient classification and amount normalization
- parsing: CSV batch parsing
- bech32: LNURL bech32 codec
- fees: Fee estimation and balance checks
- schema: Pydantic models for data validation
"""
