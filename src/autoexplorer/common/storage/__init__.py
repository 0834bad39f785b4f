"""产物存储"""

from .artifacts import ArtifactStorage, generate_crawl_id, load_artifacts, sanitize_name

__all__ = [
    "ArtifactStorage",
    "generate_crawl_id",
    "load_artifacts",
    "sanitize_name",
]
