"""Image processing core.

This package decodes uploaded images into pixel buffers, applies a
pixel transform (grayscale by default), re-encodes the result as PNG and
stores it in a flat output directory. See ``pipeline.Pipeline`` for the
entry point and ``storage.OutputStore`` for the catalog.
"""
