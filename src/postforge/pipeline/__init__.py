"""Content pipeline — outline, body, per-section enrichment, assembly, publish.

Import concrete stages from their modules; this package deliberately
re-exports nothing so that publishers can depend on the models without
pulling in the whole pipeline.
"""
