"""
tarstitch package
- Assemble tar archives inside an object store from objects that already live there.
"""
__all__ = ["cli", "config", "orchestrator", "layout", "manifest", "headers", "parts", "assembler", "store", "util", "types", "errors"]
__version__ = "0.2.0"
