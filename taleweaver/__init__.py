"""Taleweaver — interactive fiction on top of a chat-completion model.

The model is asked for JSON at every step. Its replies go through the
extraction pipeline (extractor → direct parse → tolerant repair → field
validation) inside a bounded retry loop; when every attempt fails a
deterministic fallback artifact is returned instead. Long sessions stay
inside a fixed prompt size because older turns are compacted into a
versioned summary digest in the background.
"""
