"""
Library nullability specifications for C and C++ programs.

This module defines ProcSpec for common C/C++ APIs including:
- Memory allocation (stdlib.h, malloc.h, C++ new)
- String search functions (string.h) that return NULL on a miss
- File and environment functions (stdio.h, stdlib.h, dirent.h)
- Assertion and check macros that abort when their condition fails
"""

from typing import Dict
from nullinfer.sil.procedure import ProcSpec


def _maybe_null(desc: str = "") -> ProcSpec:
    """Create a spec for a function that can return NULL"""
    return ProcSpec(may_return_null=True, description=desc)


def _never_null(desc: str = "") -> ProcSpec:
    """Create a spec for a function whose result is always non-null"""
    return ProcSpec(returns_nonnull=True, description=desc)


def _allocator(desc: str = "", may_return_null: bool = True) -> ProcSpec:
    """Create a memory allocator spec (malloc, new, etc.)"""
    if may_return_null:
        return _maybe_null(desc)
    return _never_null(desc)


def _check(desc: str = "", args: list = None) -> ProcSpec:
    """Create a spec for a call that aborts unless its condition holds"""
    return ProcSpec(aborts_if_null=True, condition_args=args or [0], description=desc)


# =============================================================================
# Memory Allocation (stdlib.h, malloc.h)
# =============================================================================

MEMORY_SPECS = {
    # C allocation functions
    "malloc": _allocator("malloc() - dynamic allocation"),
    "calloc": _allocator("calloc() - zeroed allocation"),
    "realloc": _allocator("realloc() - resize allocation"),
    "reallocarray": _allocator("reallocarray() - resize array allocation"),
    "aligned_alloc": _allocator("aligned_alloc() - aligned allocation"),
    "memalign": _allocator("memalign() - aligned allocation"),
    "valloc": _allocator("valloc() - page-aligned allocation"),
    "pvalloc": _allocator("pvalloc() - page-aligned allocation"),
    "strdup": _allocator("strdup() - string duplication"),
    "strndup": _allocator("strndup() - bounded string duplication"),
    "alloca": _allocator("alloca() - stack allocation", may_return_null=False),

    # C++ allocation (throws instead of returning null)
    "new": _allocator("new - C++ heap allocation", may_return_null=False),
    "new[]": _allocator("new[] - C++ array allocation", may_return_null=False),
    "operator new": _allocator("operator new - C++ allocation", may_return_null=False),
    "operator new[]": _allocator("operator new[] - C++ array allocation", may_return_null=False),
}

# =============================================================================
# String Functions (string.h)
# =============================================================================

STRING_SPECS = {
    # Search functions return NULL when nothing is found
    "strchr": _maybe_null("strchr() - find char in string"),
    "strrchr": _maybe_null("strrchr() - find last char in string"),
    "strstr": _maybe_null("strstr() - find substring"),
    "strpbrk": _maybe_null("strpbrk() - find any of a set of chars"),
    "memchr": _maybe_null("memchr() - find byte in memory"),
    "strtok": _maybe_null("strtok() - tokenize string"),
    "strtok_r": _maybe_null("strtok_r() - reentrant tokenize"),

    # Copy functions return their destination
    "strcpy": _never_null("strcpy() - returns dest"),
    "strncpy": _never_null("strncpy() - returns dest"),
    "strcat": _never_null("strcat() - returns dest"),
    "strncat": _never_null("strncat() - returns dest"),
    "memcpy": _never_null("memcpy() - returns dest"),
    "memmove": _never_null("memmove() - returns dest"),
    "memset": _never_null("memset() - returns dest"),
    "strerror": _never_null("strerror() - message string"),
}

# =============================================================================
# Files and Environment (stdio.h, stdlib.h, dirent.h)
# =============================================================================

FILE_SPECS = {
    "fopen": _maybe_null("fopen() - NULL on failure"),
    "freopen": _maybe_null("freopen() - NULL on failure"),
    "fdopen": _maybe_null("fdopen() - NULL on failure"),
    "tmpfile": _maybe_null("tmpfile() - NULL on failure"),
    "popen": _maybe_null("popen() - NULL on failure"),
    "fgets": _maybe_null("fgets() - NULL on EOF or error"),
    "opendir": _maybe_null("opendir() - NULL on failure"),
    "readdir": _maybe_null("readdir() - NULL at end of directory"),
    "realpath": _maybe_null("realpath() - NULL on failure"),
    "getenv": _maybe_null("getenv() - NULL when unset"),
    "secure_getenv": _maybe_null("secure_getenv() - NULL when unset"),
    "dlopen": _maybe_null("dlopen() - NULL on failure"),
    "dlsym": _maybe_null("dlsym() - NULL when symbol is missing"),
}

# =============================================================================
# Assertions and Checks
# =============================================================================

CHECK_SPECS = {
    "assert": _check("assert() - aborts when condition is false"),
    "CHECK": _check("CHECK() - aborts when condition is false"),
    "DCHECK": _check("DCHECK() - debug-mode CHECK"),
    "QCHECK": _check("QCHECK() - quiet CHECK"),
    "ABSL_CHECK": _check("ABSL_CHECK() - aborts when condition is false"),
    "ABSL_DCHECK": _check("ABSL_DCHECK() - debug-mode ABSL_CHECK"),
    "CHECK_NE": _check("CHECK_NE() - aborts unless arguments differ"),
    "DCHECK_NE": _check("DCHECK_NE() - debug-mode CHECK_NE"),
    "ABSL_CHECK_NE": _check("ABSL_CHECK_NE() - aborts unless arguments differ"),
    "CHECK_NOTNULL": _check("CHECK_NOTNULL() - aborts on null argument"),
}

# =============================================================================
# C++ Standard Library
# =============================================================================

CPP_STD_SPECS = {
    "std::addressof": _never_null("std::addressof - address of object"),
    "std::make_unique": _never_null("std::make_unique - heap allocation"),
    "std::make_shared": _never_null("std::make_shared - heap allocation"),
    "std::getenv": _maybe_null("std::getenv - NULL when unset"),
    "std::strchr": _maybe_null("std::strchr - find char in string"),
    "std::strstr": _maybe_null("std::strstr - find substring"),
}

# =============================================================================
# Combined C/C++ Specs
# =============================================================================

C_SPECS: Dict[str, ProcSpec] = {}
C_SPECS.update(MEMORY_SPECS)
C_SPECS.update(STRING_SPECS)
C_SPECS.update(FILE_SPECS)
C_SPECS.update(CHECK_SPECS)

# C++ includes all C specs plus C++ specific
CPP_SPECS: Dict[str, ProcSpec] = {}
CPP_SPECS.update(C_SPECS)
CPP_SPECS.update(CPP_STD_SPECS)
