"""
Media upload service package.

Exposes reusable primitives for category presets, WebP transcoding, storage
sinks with retrying uploads, batch uploads, and payment QR rotation, plus the
FastAPI application factory.
"""
