"""
Core modules for imgrouter.

This package contains the provider orchestration logic:
- Configuration management
- Style catalogue and prompt assembly
- Providers, retries and circuit breaking
- Provider selection and fallback
"""
