"""Setup (bootstrap) services.

This package contains the pieces that bring a freshly deployed buddy from "no config" to
"configured": supervising a temporary instance of the target service, waiting for it to
become ready, calling its setup API, and patching its config file directly as a fallback.
"""
