"""
Adaptive chunk sizing per document type.

Maps a document type to chunk size bounds, an overlap size and a chunking
strategy. The document-chunking collaborator consumes these options; the
same sizing model keeps chunk budgets aligned with retrieval limits.
"""

from __future__ import annotations

import math
from pathlib import PurePath
from typing import Dict, Optional, Union

from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.models import (
    AdaptiveChunkingConfig,
    ChunkingOptions,
    ChunkingStrategy,
    ChunkSizeProfile,
    DocumentType,
    OverlapMode,
)

# File extension -> document type
EXTENSION_TYPES: Dict[str, DocumentType] = {
    "pdf": DocumentType.PDF,
    "doc": DocumentType.DOCX,
    "docx": DocumentType.DOCX,
    "txt": DocumentType.TEXT,
    "text": DocumentType.TEXT,
    "html": DocumentType.HTML,
    "htm": DocumentType.HTML,
    "xml": DocumentType.HTML,
    "md": DocumentType.MARKDOWN,
    "markdown": DocumentType.MARKDOWN,
    "mdown": DocumentType.MARKDOWN,
    "mkd": DocumentType.MARKDOWN,
}
EXTENSION_TYPES.update({
    ext: DocumentType.CODE
    for ext in (
        "js", "ts", "jsx", "tsx", "py", "java", "cpp", "c", "cs", "go", "rs", "rb", "php",
        "swift", "kt", "scala", "sh", "bash", "zsh", "fish", "sql", "css", "scss", "sass",
        "less", "json", "yaml", "yml", "toml", "ini", "conf", "config",
    )
})


def _round_half_up(value: float) -> int:
    # Halves round up (900 * 0.125 -> 113), unlike round()
    return math.floor(value + 0.5)


def document_type_for(filename: str) -> DocumentType:
    """Document type from a file name's extension; unknown extensions map to UNKNOWN."""
    suffix = PurePath(filename).suffix.lower().lstrip(".")
    return EXTENSION_TYPES.get(suffix, DocumentType.UNKNOWN)


def get_profile(document_type: Union[DocumentType, str], config: AdaptiveChunkingConfig) -> ChunkSizeProfile:
    """Profile for a document type, falling back to the unknown profile."""
    try:
        doc_type = DocumentType(document_type)
    except ValueError:
        logger.debug(f"Unrecognised document type '{document_type}', using unknown profile")
        doc_type = DocumentType.UNKNOWN
    profile = config.profiles.get(doc_type) or config.profiles.get(DocumentType.UNKNOWN)
    if profile is None:
        max_size, min_size, ratio = tc.CHUNK_PROFILES["unknown"]
        profile = ChunkSizeProfile(max_chunk_size=max_size, min_chunk_size=min_size, overlap_ratio=ratio)
    return profile


def calculate_overlap_size(chunk_size: int, profile: ChunkSizeProfile, config: AdaptiveChunkingConfig) -> int:
    """
    Overlap in tokens between neighbouring chunks.

    fixed and ratio modes use the profile's overlap ratio. dynamic mode starts
    from the configured base ratio, lowers it by a small nudge for large
    chunks and raises it for small ones, staying within the configured
    floor and ceiling.
    """
    if config.overlap_mode in (OverlapMode.FIXED, OverlapMode.RATIO):
        return _round_half_up(chunk_size * profile.overlap_ratio)

    if config.overlap_mode is OverlapMode.DYNAMIC:
        ratio = config.base_overlap_ratio
        if chunk_size > tc.DYNAMIC_OVERLAP_LARGE_CHUNK:
            ratio = max(config.min_overlap_ratio, ratio - tc.DYNAMIC_OVERLAP_NUDGE)
        elif chunk_size < tc.DYNAMIC_OVERLAP_SMALL_CHUNK:
            ratio = min(config.max_overlap_ratio, ratio + tc.DYNAMIC_OVERLAP_NUDGE)
        return _round_half_up(chunk_size * ratio)

    return _round_half_up(chunk_size * tc.DYNAMIC_OVERLAP_BASE_RATIO)


def resolve(
    document_type: Union[DocumentType, str],
    config: Optional[AdaptiveChunkingConfig] = None,
) -> ChunkingOptions:
    """
    Chunking options for a document type.

    Args:
        document_type: DocumentType or its string value
        config: Adaptive chunking configuration; defaults when omitted

    Returns:
        ChunkingOptions with max/min chunk size, overlap size and strategy
    """
    config = config or AdaptiveChunkingConfig()
    if not config.enabled:
        return ChunkingOptions(
            max_chunk_size=tc.STATIC_MAX_CHUNK_SIZE,
            min_chunk_size=tc.STATIC_MIN_CHUNK_SIZE,
            overlap_size=tc.STATIC_CHUNK_OVERLAP,
            strategy=ChunkingStrategy.SENTENCE,
        )

    profile = get_profile(document_type, config)
    options = ChunkingOptions(
        max_chunk_size=profile.max_chunk_size,
        min_chunk_size=profile.min_chunk_size,
        overlap_size=calculate_overlap_size(profile.max_chunk_size, profile, config),
        strategy=profile.preferred_strategy,
    )
    logger.debug(
        f"Chunk profile for {document_type}: max={options.max_chunk_size} "
        f"min={options.min_chunk_size} overlap={options.overlap_size}"
    )
    return options


def resolve_for_file(filename: str, config: Optional[AdaptiveChunkingConfig] = None) -> ChunkingOptions:
    return resolve(document_type_for(filename), config)
