"""
bundleforge: build orchestration for WebAssembly + TypeScript web bundles.

Compiles a Rust crate into a WebAssembly module with typed glue bindings,
bundles the TypeScript front-end against those bindings, layers static assets
on top, and serves the result with live reload during development.
"""

__version__ = "0.3.0"
__author__ = "bundleforge contributors"
