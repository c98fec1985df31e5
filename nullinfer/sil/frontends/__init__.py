"""
Language frontends for nullability SIL.

Each frontend translates source code from a specific language to SIL.
Frontends use tree-sitter for parsing and produce a SIL Program.

Available frontends:
- CFrontend: C source code
- CppFrontend: C++ source code
"""

# C/C++ frontend
try:
    from nullinfer.sil.frontends.c_frontend import CFrontend, CppFrontend
    C_FRONTEND_AVAILABLE = True
except ImportError:
    C_FRONTEND_AVAILABLE = False
    CFrontend = None
    CppFrontend = None

__all__ = [
    "CFrontend",
    "CppFrontend",
    "C_FRONTEND_AVAILABLE",
]
