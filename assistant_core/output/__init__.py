from assistant_core.output.sanitizer import sanitize

__all__ = ["sanitize"]
