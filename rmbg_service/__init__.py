"""
RMBG-2.0 background removal service package.

Exposes reusable primitives for acquiring and caching the Core ML model,
encoding images for it, decoding its mask and compositing the cut-out, plus
the FastAPI application serving them.
"""
