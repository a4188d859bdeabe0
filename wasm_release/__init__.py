"""wasm-release - build, pack and publish Rust WebAssembly libraries.

This package drives wasm-pack through a fixed sequence of stages
(provision, compile, pack, extract, publish) inside a throwaway build
environment and attaches the resulting npm tarball to a GitHub Release.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
