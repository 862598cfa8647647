from .codec import FlatFileCodec, normalize_delimiter, render_value

__all__ = ["FlatFileCodec", "normalize_delimiter", "render_value"]
