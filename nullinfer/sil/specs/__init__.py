"""
Library nullability specifications.

ProcSpec tables for functions a program calls without declaring them:
- Functions that may return null (malloc, fopen, getenv, ...)
- Functions whose result is never null (operator new, alloca, ...)
- Checks that abort unless their condition holds (assert, CHECK, ...)
"""

from nullinfer.sil.specs.c_specs import C_SPECS, CPP_SPECS

__all__ = [
    "C_SPECS",
    "CPP_SPECS",
]
